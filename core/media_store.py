# core/media_store.py

import logging
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from core.database import GalleryDatabase
from core.errors import DecodeError
from core.image_decoder import read_dimensions
from core.models import MediaItem
from utils.file_utils import get_media_files, is_video_file

logger = logging.getLogger(__name__)


class DirectoryMediaStore:
    """
    Library enumerator backed by a directory tree.

    scan() registers new files in the database, which assigns the stable
    ids; enumeration afterwards is served from the database. Items are
    never deleted here.
    """

    def __init__(self, database: GalleryDatabase, root: str,
                 recursive: bool = True, include_videos: bool = True):
        self.database = database
        self.root = root
        self.recursive = recursive
        self.include_videos = include_videos

    def find_new_files(self) -> List[str]:
        """Media files under root that are not registered yet"""
        known = {item.path for item in self.database.list_all_items()}
        all_files = [
            str(Path(f).resolve())
            for f in get_media_files(self.root, self.recursive, self.include_videos)
        ]
        new_files = [f for f in all_files if f not in known]

        logger.info("Found %d new files out of %d total", len(new_files), len(all_files))
        return new_files

    def scan(self, show_progress: bool = False) -> List[MediaItem]:
        """Register new files and return their items"""
        added = []
        for path in tqdm(self.find_new_files(), desc="Scanning library",
                         disable=not show_progress):
            try:
                width, height = read_dimensions(path)
            except DecodeError as e:
                # Still registered: the processing run reports decode failures
                logger.warning("Cannot read dimensions of %s: %s", path, e)
                width, height = None, None

            item_id = self.database.add_item(path, width, height, is_video_file(path))
            added.append(self.database.get_item(item_id))

        return added

    def list_all_items(self) -> List[MediaItem]:
        return self.database.list_all_items()

    def get_item(self, item_id: int) -> Optional[MediaItem]:
        return self.database.get_item(item_id)
