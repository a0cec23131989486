"""
models/image.py
---------------
Result of a background removal.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path


@dataclass
class ProcessedImage:
    """
    Attributes:
        data: The processed image bytes returned by remove.bg.
        format: Output format ('png', 'jpg' or 'webp').
        filename: Name of the saved file.
        path: Where the file was written.
        processed_at: Completion time.
    """
    data: bytes
    format: str
    filename: str
    path: Path
    processed_at: datetime = field(default_factory=datetime.now)

    @property
    def size(self) -> int:
        return len(self.data)
