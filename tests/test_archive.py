import hashlib
import io
import os
import tarfile

import pytest

from preflightcheck.archive import generate_bundle_hash, resolve_link_paths, untar

EMPTY_MD5 = "d41d8cd98f00b204e9800998ecf8427e"


def _tar_bytes(members, extra_bytes=0):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as archive:
        for info, content in members:
            if content is not None:
                info.size = len(content)
                archive.addfile(info, io.BytesIO(content))
            else:
                archive.addfile(info)
    return buf.getvalue() + b"\0" * extra_bytes


def _file(name, mode=0o644):
    info = tarfile.TarInfo(name)
    info.type = tarfile.REGTYPE
    info.mode = mode
    return info


def _dir(name):
    info = tarfile.TarInfo(name)
    info.type = tarfile.DIRTYPE
    info.mode = 0o755
    return info


def _link(name, linkname, kind):
    info = tarfile.TarInfo(name)
    info.type = kind
    info.linkname = linkname
    return info


@pytest.mark.parametrize(
    "old, new, expected_old, expected_new",
    [
        ("../usr/lib/file", "file", "/usr/lib/file", "file"),
        ("/usr/lib/file", "file", "/usr/lib/file", "file"),
        ("../usr/lib/file", "etc/file", "usr/lib/file", "etc/file"),
        ("../../cfg/file", "etc/foo/file", "cfg/file", "etc/foo/file"),
    ],
)
def test_resolve_link_paths(old, new, expected_old, expected_new):
    assert resolve_link_paths(old, new) == (expected_old, expected_new)


def test_untar_regular_file_with_trailing_bytes(tmp_path):
    data = _tar_bytes([(_file("myfile"), b"mycontent")], extra_bytes=10)
    untar(str(tmp_path), io.BytesIO(data))
    assert (tmp_path / "myfile").read_bytes() == b"mycontent"


def test_untar_plain_tar_layer(tmp_path):
    data = _tar_bytes([(_file("myfile"), b"mycontent")])
    untar(str(tmp_path), io.BytesIO(data))
    assert (tmp_path / "myfile").read_bytes() == b"mycontent"


def test_untar_not_a_tar_raises(tmp_path):
    with pytest.raises(tarfile.ReadError):
        untar(str(tmp_path), io.BytesIO(b'{"foo":"bar"}'))


def test_untar_empty_stream_creates_nothing(tmp_path):
    untar(str(tmp_path), io.BytesIO(b""))
    assert list(tmp_path.iterdir()) == []


def test_untar_creates_parent_directories(tmp_path):
    data = _tar_bytes([(_file("a/b/c.txt"), b"deep")])
    untar(str(tmp_path), io.BytesIO(data))
    assert (tmp_path / "a" / "b" / "c.txt").read_text() == "deep"


def test_untar_directories_and_links(tmp_path):
    dst = str(tmp_path)
    data = _tar_bytes(
        [
            (_dir("etc"), None),
            (_file("etc/conf"), b"config"),
            (_link("lib/link", "../etc/conf", tarfile.SYMTYPE), None),
            (_link("etc/conf.hard", "etc/conf", tarfile.LNKTYPE), None),
        ]
    )
    untar(dst, io.BytesIO(data))
    assert (tmp_path / "etc").is_dir()
    assert os.readlink(tmp_path / "lib" / "link") == os.path.join(dst, "etc", "conf")
    assert (tmp_path / "lib" / "link").read_bytes() == b"config"
    assert (tmp_path / "etc" / "conf.hard").read_bytes() == b"config"
    assert os.stat(tmp_path / "etc" / "conf.hard").st_ino == os.stat(tmp_path / "etc" / "conf").st_ino


def test_untar_absolute_symlink_is_rooted_in_destination(tmp_path):
    dst = str(tmp_path)
    data = _tar_bytes([(_link("bin/sh", "/usr/bin/bash", tarfile.SYMTYPE), None)])
    untar(dst, io.BytesIO(data))
    assert os.readlink(tmp_path / "bin" / "sh") == os.path.join(dst, "usr", "bin", "bash")


def test_untar_skips_symlink_escaping_destination(tmp_path):
    dst = tmp_path / "root"
    dst.mkdir()
    data = _tar_bytes(
        [
            (_link("a/b", "../../../x", tarfile.SYMTYPE), None),
            (_file("kept"), b"ok"),
        ]
    )
    untar(str(dst), io.BytesIO(data))
    assert sorted(entry.name for entry in dst.iterdir()) == ["kept"]
    assert (dst / "kept").read_bytes() == b"ok"


def test_untar_ignores_failed_hard_link(tmp_path):
    data = _tar_bytes(
        [
            (_link("broken", "missing", tarfile.LNKTYPE), None),
            (_file("after"), b"ok"),
        ]
    )
    untar(str(tmp_path), io.BytesIO(data))
    assert not os.path.lexists(tmp_path / "broken")
    assert (tmp_path / "after").read_bytes() == b"ok"


def test_bundle_hash_of_empty_directory(tmp_path):
    artifacts = tmp_path / "artifacts"
    artifacts.mkdir()
    bundle = tmp_path / "bundle"
    bundle.mkdir()
    assert generate_bundle_hash(bundle, artifacts) == EMPTY_MD5
    assert (artifacts / "hashes.txt").read_bytes() == b""


def test_bundle_hash_of_missing_directory(tmp_path):
    assert generate_bundle_hash(tmp_path / "missing") == EMPTY_MD5


def test_bundle_hash_ignores_dockerfile(tmp_path):
    (tmp_path / "Dockerfile").write_text("FROM scratch\n")
    assert generate_bundle_hash(tmp_path) == EMPTY_MD5


def test_bundle_hash_listing(tmp_path):
    artifacts = tmp_path / "artifacts"
    artifacts.mkdir()
    bundle = tmp_path / "bundle"
    (bundle / "manifests").mkdir(parents=True)
    (bundle / "myfile").write_bytes(b"mycontent")
    (bundle / "manifests" / "csv.yaml").write_bytes(b"kind: ClusterServiceVersion\n")
    (bundle / "Dockerfile").write_bytes(b"FROM scratch\n")

    result = generate_bundle_hash(bundle, artifacts)

    listing = (artifacts / "hashes.txt").read_bytes()
    lines = listing.decode().splitlines()
    assert len(lines) == 2
    assert lines == sorted(lines)
    paths = sorted(line.split("  ")[1] for line in lines)
    assert paths == ["./manifests/csv.yaml", "./myfile"]
    assert all(len(line.split("  ")[0]) == 32 for line in lines)
    assert result == hashlib.md5(listing).hexdigest()
    assert len(result) == 32


def test_bundle_hash_duplicate_content_listed_once(tmp_path):
    artifacts = tmp_path / "artifacts"
    artifacts.mkdir()
    bundle = tmp_path / "bundle"
    bundle.mkdir()
    (bundle / "a").write_bytes(b"same")
    (bundle / "b").write_bytes(b"same")
    generate_bundle_hash(bundle, artifacts)
    lines = (artifacts / "hashes.txt").read_text().splitlines()
    assert len(lines) == 1
    assert lines[0].endswith("  ./b")


def test_bundle_hash_changes_with_content(tmp_path):
    first = tmp_path / "first"
    second = tmp_path / "second"
    first.mkdir()
    second.mkdir()
    (first / "myfile").write_bytes(b"mycontent")
    (second / "myfile").write_bytes(b"othercontent")
    assert generate_bundle_hash(first) != generate_bundle_hash(second)
    assert generate_bundle_hash(first) == generate_bundle_hash(first)
    assert generate_bundle_hash(first) != EMPTY_MD5


def test_bundle_hash_from_untarred_layer(tmp_path):
    fs = tmp_path / "fs"
    fs.mkdir()
    untar(str(fs), io.BytesIO(_tar_bytes([(_file("myfile"), b"mycontent")], extra_bytes=10)))
    artifacts = tmp_path / "artifacts"
    artifacts.mkdir()
    result = generate_bundle_hash(fs, artifacts)
    listing = (artifacts / "hashes.txt").read_text()
    assert listing.endswith("  ./myfile\n")
    assert result != EMPTY_MD5