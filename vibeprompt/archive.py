import logging
import zipfile
from pathlib import Path
from typing import List, Union

from vibeprompt.errors import DirectoryAccessUnsupported
from vibeprompt.tree import FlatEntry

logger = logging.getLogger(__name__)


def load_archive_entries(archive: Union[str, Path]) -> List[FlatEntry]:
    """Read a zip upload into flat entries rooted at a single folder name.

    Archives whose members are not wrapped in one top-level folder get the
    archive's stem as a synthetic root, so every path has a root segment.
    """
    archive = Path(archive)
    if not zipfile.is_zipfile(archive):
        raise DirectoryAccessUnsupported(f"Not a directory or zip archive: {archive}")

    with zipfile.ZipFile(archive) as zf:
        members = [info for info in zf.infolist() if not info.is_dir()]
        names = [info.filename.replace("\\", "/").lstrip("/") for info in members]
        top_levels = {name.split("/")[0] for name in names}
        wrapped = len(top_levels) == 1 and all("/" in name for name in names)

        entries = []
        for info, name in zip(members, names):
            path = name if wrapped else f"{archive.stem}/{name}"
            entries.append(FlatEntry(path=path, data=zf.read(info)))

    logger.debug("Loaded %d entries from %s", len(entries), archive)
    return entries
