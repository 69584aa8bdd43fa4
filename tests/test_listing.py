"""
Tests for directory listing rendering.
"""

import os
import sys
from datetime import datetime

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from simpleserver.listing import (
    DirectoryEntry,
    directory_title,
    format_entry,
    list_entries,
    parent_entry,
    relative_href,
    render_listing,
)


STAMP = datetime(2024, 1, 31, 12, 5, 9)


class TestPaths:
    """Tests for relative paths and titles."""

    def test_relative_href(self, tmp_path):
        root = str(tmp_path)
        assert relative_href(root, root) == ''
        assert relative_href(root, os.path.join(root, 'a.txt')) == '/a.txt'
        assert relative_href(root, os.path.join(root, 'sub', 'x.txt')) == '/sub/x.txt'

    def test_title_ends_with_slash(self, tmp_path):
        root = str(tmp_path)
        assert directory_title(root, root) == '/'
        assert directory_title(root, os.path.join(root, 'sub')) == '/sub/'
        assert directory_title(root, os.path.join(root, 'sub', 'deeper')) == '/sub/deeper/'


class TestFormatEntry:
    """Tests for single listing lines."""

    def test_file_line(self):
        entry = DirectoryEntry('x.txt', False, 1234, STAMP, '/sub/x.txt')
        assert format_entry(entry) == (
            '2024-01-31 12:05:09' + ' ' * 14 + '1,234' + ' <a href="/sub/x.txt">x.txt</a>'
        )

    def test_large_size_is_thousands_separated(self):
        entry = DirectoryEntry('big.iso', False, 1234567890, STAMP, '/big.iso')
        assert '1,234,567,890 <a href="/big.iso">' in format_entry(entry)

    def test_directory_line(self):
        entry = DirectoryEntry('sub', True, None, STAMP, '/sub')
        assert format_entry(entry) == (
            '2024-01-31 12:05:09' + '   &lt;DIR&gt;' + ' ' * 12 + '<a href="/sub">sub</a>'
        )

    def test_size_and_dir_columns_align(self):
        f = format_entry(DirectoryEntry('a', False, 5, STAMP, '/a'))
        d = format_entry(DirectoryEntry('b', True, None, STAMP, '/b'))
        visible_dir = d.replace('&lt;', '<').replace('&gt;', '>')
        assert len(f.split('<a ')[0]) == len(visible_dir.split('<a ')[0])

    def test_name_is_escaped(self):
        entry = DirectoryEntry('a<b>&c.txt', False, 1, STAMP, '/a<b>&c.txt')
        line = format_entry(entry)
        assert '>a&lt;b&gt;&amp;c.txt</a>' in line
        assert 'href="/a%3Cb%3E%26c.txt"' in line

    def test_href_is_quoted(self):
        entry = DirectoryEntry('my file.txt', False, 1, STAMP, '/my file.txt')
        assert '<a href="/my%20file.txt">my file.txt</a>' in format_entry(entry)


class TestEntries:
    """Tests for building entries from the filesystem."""

    def test_enumeration_order(self, tmp_path):
        for name in ('zeta', 'alpha', 'mid'):
            (tmp_path / name).write_text(name)
        (tmp_path / 'dir').mkdir()
        entries = list_entries(str(tmp_path), str(tmp_path))
        assert [e.name for e in entries] == os.listdir(tmp_path)

    def test_entry_fields(self, tmp_path):
        (tmp_path / 'f.bin').write_bytes(b'12345')
        (tmp_path / 'd').mkdir()
        entries = {e.name: e for e in list_entries(str(tmp_path), str(tmp_path))}

        f = entries['f.bin']
        assert not f.is_directory
        assert f.size == 5
        assert f.relative_href == '/f.bin'
        assert f.last_modified == datetime.fromtimestamp(os.stat(tmp_path / 'f.bin').st_mtime)

        d = entries['d']
        assert d.is_directory
        assert d.size is None
        assert d.relative_href == '/d'

    def test_dangling_symlink_is_listed(self, tmp_path):
        os.symlink(tmp_path / 'nowhere', tmp_path / 'dangling')
        entries = list_entries(str(tmp_path), str(tmp_path))
        assert [e.name for e in entries] == ['dangling']

    def test_parent_entry(self, tmp_path):
        (tmp_path / 'a').mkdir()
        (tmp_path / 'a' / 'b').mkdir()
        root = str(tmp_path)
        assert parent_entry(root, os.path.join(root, 'a')).relative_href == '/'
        parent = parent_entry(root, os.path.join(root, 'a', 'b'))
        assert parent.name == '..'
        assert parent.is_directory
        assert parent.relative_href == '/a/'


class TestRender:
    """Tests for whole pages."""

    def test_page_structure(self, tmp_path):
        (tmp_path / 'sub').mkdir()
        (tmp_path / 'sub' / 'x.txt').write_text('x')
        html = render_listing(str(tmp_path), str(tmp_path / 'sub')).decode('utf-8')
        assert html.startswith('<!DOCTYPE html><html><head>')
        assert '<meta charset="utf-8">' in html
        assert '<title>/sub/</title>' in html
        assert '<h2>/sub/</h2><pre>' in html
        lines = html.split('<pre>', 1)[1].split('</pre>', 1)[0].splitlines()
        assert len(lines) == 2
        assert lines[0].endswith('<a href="/">..</a>')
        assert lines[1].endswith('<a href="/sub/x.txt">x.txt</a>')
        assert html.endswith('</pre></body></html>')

    def test_empty_root(self, tmp_path):
        html = render_listing(str(tmp_path), str(tmp_path)).decode('utf-8')
        assert '<pre></pre>' in html
