"""Stemcell tarball reader."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from microdeploy.lib.archive import decompress
from microdeploy.lib.errors import ValidationError
from microdeploy.lib.logging_config import get_logger
from microdeploy.models.stemcell import ApplySpec, ExtractedStemcell, StemcellManifest

logger = get_logger(__name__)

MANIFEST_FILE = "stemcell.MF"
APPLY_SPEC_FILE = "apply_spec.yml"
IMAGE_FILE = "image"


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ValidationError("stemcell", [f"Reading {path.name}: {exc}"]) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("stemcell", [f"{path.name} must contain a YAML mapping"])
    return data


class StemcellReader:
    """Extract a stemcell tarball and parse ``stemcell.MF`` and ``apply_spec.yml``."""

    def read(self, tarball_path: Path, extract_dir: Path) -> ExtractedStemcell:
        """Extract ``tarball_path`` into ``extract_dir``.

        Raises:
            ArchiveError: If the tarball cannot be extracted
            ValidationError: If the manifest is missing or malformed
        """
        logger.info(f"Extracting stemcell {tarball_path} to {extract_dir}")
        decompress(Path(tarball_path), extract_dir)

        manifest_path = extract_dir / MANIFEST_FILE
        if not manifest_path.is_file():
            raise ValidationError("stemcell", [f"{MANIFEST_FILE} not found"])
        raw = _load_yaml(manifest_path)

        try:
            manifest = StemcellManifest(
                name=raw.get("name", ""),
                version=str(raw.get("version", "")),
                sha1=raw.get("sha1", ""),
                image_path=str(extract_dir / IMAGE_FILE),
                cloud_properties=raw.get("cloud_properties") or {},
            )
        except PydanticValidationError as exc:
            raise ValidationError("stemcell", [str(exc)]) from exc
        if not manifest.name:
            raise ValidationError("stemcell", ["Stemcell name is missing"])

        apply_spec_path = extract_dir / APPLY_SPEC_FILE
        apply_spec = ApplySpec()
        if apply_spec_path.is_file():
            try:
                apply_spec = ApplySpec.model_validate(_load_yaml(apply_spec_path))
            except PydanticValidationError as exc:
                raise ValidationError("stemcell", [f"{APPLY_SPEC_FILE}: {exc}"]) from exc

        return ExtractedStemcell(manifest, apply_spec, extract_dir)
