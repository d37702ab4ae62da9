from __future__ import annotations

from imagebuild.steps.mount_extra import STEP as MOUNT_EXTRA
from imagebuild.steps.output_dir import STEP as OUTPUT_DIR

__all_steps__ = [
    OUTPUT_DIR,
    MOUNT_EXTRA,
]
