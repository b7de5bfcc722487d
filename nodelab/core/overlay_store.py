# nodelab/core/overlay_store.py
import subprocess
from pathlib import Path

from loguru import logger

from . import config
from .exceptions import OverlayCreationError


class OverlayStore:
    """qcow2 overlays backed by one shared, read-only base image."""

    def __init__(
        self,
        base_image: str | Path = config.BASE_IMAGE_PATH,
        overlay_dir: str | Path = config.OVERLAY_DIR,
        qemu_img: str = config.QEMU_IMG_BINARY,
    ):
        self.base_image = Path(base_image)
        self.overlay_dir = Path(overlay_dir)
        self.qemu_img = qemu_img

    def ensure_directories(self):
        self.overlay_dir.mkdir(parents=True, exist_ok=True)

    def base_image_exists(self) -> bool:
        return self.base_image.is_file()

    def overlay_path(self, node_id: str) -> Path:
        return self.overlay_dir / f"{node_id}.qcow2"

    def create_overlay(self, node_id: str) -> Path:
        """Creates a new qcow2 overlay file for a node."""
        return self._materialize(self.overlay_path(node_id))

    def delete_overlay(self, path: str | Path) -> bool:
        """Removes an overlay. Never raises; a missing file counts as a failure."""
        try:
            Path(path).unlink()
        except OSError as e:
            logger.warning(f"Failed to delete overlay {path}: {e}")
            return False
        logger.debug(f"Deleted overlay {path}")
        return True

    def recreate_overlay(self, path: str | Path) -> Path:
        """Deletes and re-creates an overlay in place.

        If the create step fails the old overlay is already gone and the node
        is left without a disk until the next successful wipe.
        """
        self.delete_overlay(path)
        return self._materialize(Path(path))

    def _materialize(self, overlay_path: Path) -> Path:
        if not self.base_image_exists():
            raise OverlayCreationError(
                f"Base image not found at {self.base_image}. Please create base.qcow2 first."
            )
        cmd = [
            self.qemu_img, "create",
            "-f", "qcow2",
            "-F", "qcow2",
            "-b", str(self.base_image),
            str(overlay_path),
        ]
        try:
            subprocess.run(cmd, check=True, capture_output=True)
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or b"").decode(errors="replace").strip()
            logger.error(f"qemu-img failed for {overlay_path} (exit {e.returncode}): {stderr}")
            raise OverlayCreationError(f"Failed to create overlay disk: {stderr or e}")
        except OSError as e:
            logger.error(f"Could not run {self.qemu_img}: {e}")
            raise OverlayCreationError(f"Failed to create overlay disk: {e}")
        logger.info(f"Created overlay {overlay_path}")
        return overlay_path
