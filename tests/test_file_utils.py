import pytest

from utils.file_utils import decode_source, discover_source_files, is_php_file, read_source_file


class TestDecoding:
    """Test source decoding with encoding fallback."""

    def test_utf8(self):
        assert decode_source('<?php echo "héllo";'.encode('utf-8')) == ('<?php echo "héllo";', 'utf-8')

    def test_undecodable_bytes_never_raise(self):
        text, encoding = decode_source(b'<?php echo "\xff\xfe\xfa";')
        assert text.startswith('<?php echo')
        assert encoding != 'utf-8'

    def test_read_rejects_binary(self, tmp_path):
        path = tmp_path / 'blob.php'
        path.write_bytes(b'\x00\x01\x02<?php')
        with pytest.raises(ValueError):
            read_source_file(path)

    def test_read_rejects_large_files(self, tmp_path):
        path = tmp_path / 'big.php'
        path.write_text('<?php\n' + '$a = 1;\n' * 100, encoding='utf-8')
        with pytest.raises(ValueError):
            read_source_file(path, max_size=64)

    def test_read_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            read_source_file(tmp_path / 'missing.php')


class TestDiscovery:
    """Test file discovery."""

    @pytest.mark.parametrize('name,extensions,expected', [
        ('index.php', None, True),
        ('view.PHTML', None, True),
        ('notes.txt', None, False),
        ('lib.inc', ['php'], False),
        ('lib.inc', ['.php', 'inc'], True),
    ])
    def test_is_php_file(self, name, extensions, expected):
        assert is_php_file(name, extensions) is expected

    def test_sorted_walk_skips_vcs_and_excluded(self, php_project, tmp_path):
        php_project({
            'b.php': '<?php',
            'a/z.php': '<?php',
            'a/readme.md': '# docs',
            '.git/hook.php': '<?php',
            'skip/me.php': '<?php',
        })

        found = list(discover_source_files(tmp_path, ['php'], lambda path: 'skip' in path.parts))

        assert [path.relative_to(tmp_path).as_posix() for path in found] == ['b.php', 'a/z.php']

    def test_single_file_target(self, php_project):
        path, = php_project({'one.php': '<?php'})
        assert list(discover_source_files(path, ['php'])) == [path]
