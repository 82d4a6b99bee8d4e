"""Filesystem access confined to the media library root."""
import logging
import os
from datetime import datetime, timezone
from typing import List, Optional

from mediatier.core.errors import PathAuthorizationError
from mediatier.core.models import MediaFileInfo

logger = logging.getLogger(__name__)

MEDIA_EXTENSIONS = {".mkv", ".mp4", ".avi", ".wmv", ".strm"}
STRM_EXTENSION = ".strm"


def path_key(path: str) -> str:
    """Clé de comparaison d'un chemin: insensible à la casse, séparateurs '/'."""
    return path.replace("\\", "/").rstrip("/").lower()


def file_name(path: str) -> str:
    return path.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]


def stem_key(path: str) -> str:
    """path_key sans l'extension."""
    return os.path.splitext(path_key(path))[0]


class FileManager:
    """Opérations fichiers limitées à la racine de la bibliothèque."""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)
        self._root_key = os.path.normcase(self.root)

    def validate_path(self, path: str) -> str:
        """Retourne le chemin absolu, ou lève PathAuthorizationError s'il sort de la racine.

        Les liens ne sont pas résolus: un lien dans la bibliothèque pointe
        normalement hors de celle-ci.
        """
        full_path = os.path.abspath(path)
        candidate = os.path.normcase(full_path)
        try:
            inside = os.path.commonpath([self._root_key, candidate]) == self._root_key
        except ValueError:
            # Lecteurs différents (Windows)
            inside = False
        if not inside:
            raise PathAuthorizationError(path, self.root)
        return full_path

    def file_exists(self, path: str) -> bool:
        full_path = self.validate_path(path)
        return os.path.islink(full_path) or os.path.isfile(full_path)

    def is_symlink(self, path: str) -> bool:
        full_path = self.validate_path(path)
        return os.path.islink(full_path) or full_path.lower().endswith(STRM_EXTENSION)

    def get_symlink_target(self, path: str) -> Optional[str]:
        """Cible d'un lien, ou URL/chemin contenu dans un fichier .strm."""
        full_path = self.validate_path(path)
        if os.path.islink(full_path):
            return os.readlink(full_path)
        if full_path.lower().endswith(STRM_EXTENSION) and os.path.isfile(full_path):
            with open(full_path, "r", encoding="utf-8", errors="replace") as f:
                return f.readline().strip() or None
        return None

    def get_file_size(self, path: str) -> int:
        full_path = self.validate_path(path)
        try:
            return os.stat(full_path).st_size
        except OSError:
            # lien cassé: taille du lien lui-même
            return os.lstat(full_path).st_size

    def find_media_sibling(self, path: str) -> Optional[str]:
        """Autre fichier média du même dossier avec le même nom de base (ex: .strm remplacé par .mkv)."""
        full_path = self.validate_path(path)
        directory, name = os.path.split(full_path)
        stem = os.path.splitext(name)[0].lower()
        if not os.path.isdir(directory):
            return None
        for entry in sorted(os.listdir(directory)):
            base, extension = os.path.splitext(entry)
            if extension.lower() not in MEDIA_EXTENSIONS or base.lower() != stem:
                continue
            candidate = os.path.join(directory, entry)
            if candidate != full_path and (os.path.islink(candidate) or os.path.isfile(candidate)):
                return candidate
        return None

    def delete_file(self, path: str) -> bool:
        """Supprime un fichier (ou un répertoire vide). Retourne False s'il n'existait pas."""
        full_path = self.validate_path(path)
        if os.path.islink(full_path) or os.path.isfile(full_path):
            os.remove(full_path)
            logger.info("Deleted file: %s", full_path)
            return True
        if os.path.isdir(full_path):
            # non récursif: OSError si le répertoire n'est pas vide
            os.rmdir(full_path)
            logger.info("Deleted directory: %s", full_path)
            return True
        return False

    def scan_directory(self, path: Optional[str] = None, recursive: bool = True) -> List[MediaFileInfo]:
        """Liste les fichiers média sous `path` (par défaut la racine)."""
        base = self.validate_path(path or self.root)
        results: List[MediaFileInfo] = []
        if not os.path.isdir(base):
            logger.warning("Media directory does not exist: %s", base)
            return results

        for dirpath, dirnames, filenames in os.walk(base, followlinks=False):
            for name in filenames:
                extension = os.path.splitext(name)[1].lower()
                if extension not in MEDIA_EXTENSIONS:
                    continue
                full_path = os.path.join(dirpath, name)
                try:
                    results.append(self._file_info(full_path, name, extension))
                except OSError as e:
                    logger.warning("Error reading media file %s: %s", full_path, e)
            if not recursive:
                break
        return results

    def _file_info(self, full_path: str, name: str, extension: str) -> MediaFileInfo:
        link = os.path.islink(full_path)
        stat = os.lstat(full_path) if link else os.stat(full_path)
        size = stat.st_size
        if link:
            try:
                size = os.stat(full_path).st_size
            except OSError:
                pass  # cible absente
        return MediaFileInfo(
            path=full_path,
            name=name,
            is_symlink=link or extension == STRM_EXTENSION,
            size=size,
            symlink_target=os.readlink(full_path) if link else None,
            last_modified=datetime.fromtimestamp(stat.st_mtime, timezone.utc).replace(tzinfo=None),
        )
