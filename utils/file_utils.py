"""
File operation utilities
"""

from pathlib import Path
from typing import List

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.bmp', '.gif', '.tiff', '.webp'}
VIDEO_EXTENSIONS = {'.mp4', '.mov', '.avi', '.mkv', '.m4v', '.3gp', '.webm'}


def is_video_file(path: str) -> bool:
    return Path(path).suffix.lower() in VIDEO_EXTENSIONS


def get_media_files(directory: str, recursive: bool = True,
                    include_videos: bool = True) -> List[str]:
    """Get all image (and video) files in directory, sorted by path"""
    extensions = set(IMAGE_EXTENSIONS)
    if include_videos:
        extensions |= VIDEO_EXTENSIONS

    path = Path(directory)
    candidates = path.rglob('*') if recursive else path.glob('*')

    media_files = [
        str(f) for f in candidates
        if f.is_file() and f.suffix.lower() in extensions
    ]
    return sorted(media_files)


def format_file_size(size_bytes: int) -> str:
    """Format file size in human readable format"""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if size_bytes < 1024.0:
            return f"{size_bytes:.2f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.2f} PB"
