# preflightcheck

A library that runs certification checks against a container image
filesystem or an operator bundle and reports the results. It reads the
filesystem from a flattened tar stream. It has no runtime dependencies
beyond the standard library.

## Modules

### `preflightcheck.model`

This module holds the check model.

- `Check` pairs a name with a validator. The validator takes an
  `ImageReference` and returns `True` when the check passes. It raises an
  exception when the check could not be carried out.
- A check also carries `Metadata` (description, `CheckLevel`, links) and
  `HelpText` (message, suggestion).
- `CheckLevel` has three values: `BEST`, `OPTIONAL` and `WARN`.
- `Result` records one check, its elapsed time as a `datetime.timedelta`, and
  the error if there was one.
- `Results` collects the `passed`, `failed`, `errors` and `warned` lists. It
  also holds the tested image, the overall verdict and the certification
  hash.

### `preflightcheck.engine`

`CheckEngine.execute_checks(stream)` does the following, in order:

1. Unpacks the tar stream into a temporary directory.
2. Parses the image reference into registry, repository and tag or digest.
3. Runs every check and sorts each outcome:
   - errors go to `errors`;
   - failures of `WARN` checks go to `warned`;
   - other failures go to `failed`;
   - passes go to `passed`.

   Checks at the `OPTIONAL` level are left out of every list.
4. Returns the `Results`.

Behaviour that depends on the engine's settings:

- **Bundles.** For a bundle (`is_bundle=True`), the engine also computes the
  certification hash.
- **Cluster version.** The cluster version comes from the optional
  `cluster_version` callable. Without it, the version is recorded as unknown.
- **RPM manifest.** For images that are not scratch images, the engine builds
  an RPM manifest from the packages returned by the optional `package_lister`
  callable. When `artifacts_dir` is set, it writes the manifest there as
  `rpm-manifest.json`.

Helpers in this module:

- `build_rpm_manifest(packages)` builds the manifest from `PackageInfo`
  records.
- `get_bg_name(srcrpm)` returns the package name of a source RPM file name.
- `tag_digest_binding_info(identifier, digest)` explains how a tag will be
  paired with a digest.
- `append_unless_optional(results, result)` adds a result to a list unless
  its check is optional.

### `preflightcheck.archive`

- `untar(dst, stream)` recreates directories, regular files, symbolic links
  and hard links beneath `dst`.
  - It skips symbolic links whose target would lie outside `dst`.
  - It ignores links that cannot be created.
- `resolve_link_paths(oldname, newname)` resolves a relative link target
  against the link's directory. A link at the root resolves against `/`.
- `generate_bundle_hash(bundle_path, artifacts_dir=None)` builds a listing
  and returns its MD5.
  - The listing has the MD5 of every file except those named `Dockerfile`,
    sorted by digest.
  - When `artifacts_dir` is given, the listing is written there as
    `hashes.txt`.

### `preflightcheck.formatters`

Turns `Results` into bytes. The built-in formatters are:

| Name | Output | File extension |
|------|--------|----------------|
| `json` | Generic JSON | `json` |
| `xml` | Generic XML | `xml` |
| `junitxml` | JUnit XML | `xml` |

How to use them:

- Get a built-in formatter with `new_by_name(name)`. An unknown name raises
  `ValueError`.
- Build your own with `new(name, extension, fn)`. An empty name raises
  `ValueError`.
- `get_response(results)` returns the user-facing response as a dictionary.
- A formatting failure raises `FormattingError`.

### `preflightcheck.operatorsdk`

`OperatorSdk.scorecard(image, options)` runs `operator-sdk scorecard` with
arguments taken from `ScorecardOptions`, and returns a parsed
`ScorecardReport`.

Before the run:

- `operator-sdk` must be on `PATH`.
- A temporary config file is written with `create_scorecard_config_file()`.
- A kubeconfig, if one is given, is written to a temporary file.

Both temporary files are removed afterwards.

After the run:

- A non-zero exit with `FATA` on stderr raises `ScorecardError`.
- When `artifacts_dir` is set, the raw output is written to the result file
  named in the options.

The command runner can be replaced, for example in tests.

### `preflightcheck.submit`

- `NoopSubmitter.submit()` only logs that results are not being submitted,
  with the reason if one is set, and only while `emit_log` is true.
- `build_connect_url`, `build_images_url`, `build_test_results_url` and
  `build_vulnerabilities_url` build portal links for a project. When
  `pyxis_env` is set and is not `prod`, the links include that environment's
  host.

### `preflightcheck.logsink`

`BufferSink` writes every log record, at any level, as a plain line into a
shared text buffer. Read the text back with `getvalue()`.

## Example

```python
import io
import os
import tarfile
from datetime import timedelta

from preflightcheck.engine import CheckEngine
from preflightcheck.formatters import new_by_name
from preflightcheck.model import Check, HelpText, Metadata

# A one-layer filesystem with a licence file.
layer = io.BytesIO()
with tarfile.open(fileobj=layer, mode="w") as tar:
    data = b"license text"
    info = tarfile.TarInfo("licenses/LICENSE")
    info.size = len(data)
    tar.addfile(info, io.BytesIO(data))
layer.seek(0)

has_license = Check(
    "HasLicense",
    lambda ref: os.path.isdir(os.path.join(ref.image_fs_path, "licenses")),
    Metadata(description="Image contains licenses"),
    HelpText(message="Add licenses", suggestion="Put them in /licenses"),
)

engine = CheckEngine("registry.example.com/app:1.0", checks=[has_license])
results = engine.execute_checks(layer)

print(new_by_name("junitxml").format(results).decode())
```

## What it does not do

- It does not pull images from a registry. The caller supplies the flattened
  filesystem as a tar stream, and the resolved digest if it is wanted.
- It does not talk to a cluster. The cluster version comes from a callable the
  caller supplies.
- It does not read an image's RPM database. The package list comes from a
  callable the caller supplies.
- It does not submit results anywhere. `NoopSubmitter` is the only submitter.
- It provides no checks of its own and no command-line program.

## Running the tests

```
pip install -e ".[test]"
pytest
```