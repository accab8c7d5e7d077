"""
File operation utilities
"""

from pathlib import Path
from typing import List, Optional, Tuple

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.bmp', '.tiff', '.webp'}
GIF_EXTENSIONS = {'.gif'}
VIDEO_EXTENSIONS = {'.mp4', '.mkv', '.webm', '.mov', '.avi', '.m4v', '.wmv', '.flv'}


def media_kind_for(path: str) -> Optional[str]:
    """Media kind implied by a file extension, or None if not media"""
    suffix = Path(path).suffix.lower()
    if suffix in VIDEO_EXTENSIONS:
        return 'video'
    if suffix in GIF_EXTENSIONS:
        return 'gif'
    if suffix in IMAGE_EXTENSIONS:
        return 'image'
    return None


def get_media_files(directory: str, recursive: bool = True) -> List[Tuple[str, str]]:
    """All media files in a directory as (path, kind), sorted by path"""
    path = Path(directory)
    candidates = path.rglob('*') if recursive else path.glob('*')

    media_files = []
    for f in candidates:
        if not f.is_file():
            continue
        kind = media_kind_for(str(f))
        if kind:
            media_files.append((str(f), kind))

    return sorted(media_files)


def format_file_size(size_bytes: int) -> str:
    """Format file size in human readable format"""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if size_bytes < 1024.0:
            return f"{size_bytes:.2f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.2f} PB"
