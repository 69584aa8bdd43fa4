"""Directory listing pages.

Lines look like a classic console `dir` listing inside a <pre> block:

    2024-01-31 12:00:00   &lt;DIR&gt;            <a href="/">..</a>
    2024-01-31 12:00:00                 1,234 <a href="/sub/a.txt">a.txt</a>

Entries come in directory enumeration order; nothing is sorted.
"""
import os
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from urllib.parse import quote

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'
SIZE_COLUMN = 19
DIR_COLUMN = '   &lt;DIR&gt;           '


@dataclass
class DirectoryEntry:
    """One line of a listing."""
    name: str
    is_directory: bool
    size: Optional[int]
    last_modified: datetime
    relative_href: str


def html_escape(s):
    return s.replace('&', '&amp;').replace('<', '&lt;').replace('>', '&gt;').replace('"', '&quot;')


def relative_href(root: str, path: str) -> str:
    """Path of `path` below `root` with forward slashes and a leading '/'.

    Root itself maps to the empty string.
    """
    rel = os.path.relpath(path, root)
    if rel == os.curdir:
        return ''
    return '/' + rel.replace(os.sep, '/')


def directory_title(root: str, path: str) -> str:
    title = relative_href(root, path)
    if not title.endswith('/'):
        title += '/'
    return title


def _stat(entry: os.DirEntry) -> os.stat_result:
    try:
        return entry.stat()
    except FileNotFoundError:
        # dangling symlink
        return entry.stat(follow_symlinks=False)


def list_entries(root: str, path: str) -> List[DirectoryEntry]:
    entries = []
    with os.scandir(path) as it:
        for entry in it:
            st = _stat(entry)
            is_dir = entry.is_dir()
            entries.append(DirectoryEntry(
                name=entry.name,
                is_directory=is_dir,
                size=None if is_dir else st.st_size,
                last_modified=datetime.fromtimestamp(st.st_mtime),
                relative_href=relative_href(root, entry.path),
            ))
    return entries


def parent_entry(root: str, path: str) -> DirectoryEntry:
    parent = os.path.dirname(path)
    return DirectoryEntry(
        name='..',
        is_directory=True,
        size=None,
        last_modified=datetime.fromtimestamp(os.stat(parent).st_mtime),
        relative_href=relative_href(root, parent) + '/',
    )


def format_entry(entry: DirectoryEntry) -> str:
    if entry.is_directory:
        column = DIR_COLUMN
    else:
        column = f"{entry.size:,}".rjust(SIZE_COLUMN)
    href = quote(entry.relative_href, errors='surrogateescape')
    return (
        f"{entry.last_modified.strftime(TIMESTAMP_FORMAT)}{column} "
        f"<a href=\"{href}\">{html_escape(entry.name)}</a>"
    )


def render_listing(root: str, path: str) -> bytes:
    """HTML page for directory `path`, which must be `root` or lie below it."""
    title = html_escape(directory_title(root, path))
    lines = []
    if path != root:
        lines.append(format_entry(parent_entry(root, path)))
    for entry in list_entries(root, path):
        lines.append(format_entry(entry))

    page = (
        "<!DOCTYPE html><html><head>"
        "<meta charset=\"utf-8\">"
        f"<title>{title}</title>"
        "</head><body>"
        f"<h2>{title}</h2>"
        "<pre>"
        + ''.join(line + '\n' for line in lines)
        + "</pre></body></html>"
    )
    return page.encode('utf-8', errors='surrogateescape')
