import io
import json
import pathlib
import tempfile
import unittest
import zipfile
from unittest import mock

from mcinstall import archive
from mcinstall.config import (
    ForgeConfig,
    LauncherOptions,
    QuiltConfig,
    load_options,
    loader_config_from_dict,
)
from mcinstall.errors import ArchiveError, ConfigError
from mcinstall.replacer import replace_text, substitute_tokens
from mcinstall.utils import check_item_rules, maven_path


class MavenPathTests(unittest.TestCase):
    def test_plain_coordinate(self) -> None:
        location = maven_path('org.ow2.asm:asm:9.6')
        self.assertEqual(location.path, 'org/ow2/asm/asm/9.6')
        self.assertEqual(location.name, 'asm-9.6.jar')
        self.assertEqual(location.relative, 'org/ow2/asm/asm/9.6/asm-9.6.jar')

    def test_classifier_and_suffix(self) -> None:
        self.assertEqual(maven_path('net.minecraftforge:forge:1.20.1-47.1.0:universal').name,
                         'forge-1.20.1-47.1.0-universal.jar')
        self.assertEqual(maven_path('org.lwjgl:lwjgl:3.3.1', '-natives-linux').name,
                         'lwjgl-3.3.1-natives-linux.jar')

    def test_pinned_extension(self) -> None:
        location = maven_path('[de.oceanlabs.mcp:mcp_config:1.20.1-20230612.114412@zip]')
        self.assertEqual(location.relative,
                         'de/oceanlabs/mcp/mcp_config/1.20.1-20230612.114412/mcp_config-1.20.1-20230612.114412.zip')

    def test_invalid_coordinate(self) -> None:
        with self.assertRaises(ValueError):
            maven_path('not-a-coordinate')


class RuleTests(unittest.TestCase):
    def test_no_rules_allows(self) -> None:
        self.assertTrue(check_item_rules(None))
        self.assertTrue(check_item_rules([]))

    @mock.patch('mcinstall.utils.get_os_name', return_value='linux')
    def test_os_rules(self, _) -> None:
        self.assertTrue(check_item_rules([{'action': 'allow'}, {'action': 'disallow', 'os': {'name': 'osx'}}]))
        self.assertFalse(check_item_rules([{'action': 'allow', 'os': {'name': 'windows'}}]))

    def test_feature_rules(self) -> None:
        rules = [{'action': 'allow', 'features': {'is_demo_user': True}}]
        self.assertFalse(check_item_rules(rules))
        self.assertFalse(check_item_rules(rules, {'is_demo_user': False}))
        self.assertTrue(check_item_rules(rules, {'is_demo_user': True}))


class ReplacerTests(unittest.TestCase):
    def test_replace_text(self) -> None:
        self.assertEqual(replace_text(':thisdir:/mc', {':thisdir:': '/home/me'}), '/home/me/mc')
        self.assertEqual(replace_text(42, {':thisdir:': '/home/me'}), 42)

    def test_substitute_tokens_single_pass(self) -> None:
        table = {'A': '{B}', 'B': 'b'}
        self.assertEqual(substitute_tokens('--x {A} {B}', table), '--x {B} b')

    def test_missing_tokens(self) -> None:
        self.assertEqual(substitute_tokens('{NOPE}', {}), '{NOPE}')
        self.assertEqual(substitute_tokens('{NOPE}', {}, on_missing=str.lower), 'nope')


class ArchiveTests(unittest.TestCase):
    def test_create_archive_later_parts_win(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            target = pathlib.Path(tmp) / 'merged.jar'
            target.write_bytes(archive.create_archive(
                [('a.class', b'base'), ('META-INF/MOJANG.SF', b'sig'), ('a.class', b'patched')],
                skip_prefix='META-INF',
            ))
            self.assertEqual(archive.read_entry(target, 'a.class'), b'patched')
            self.assertEqual(archive.list_entries(target), ['a.class'])
            with self.assertRaises(ArchiveError):
                archive.read_entry(target, 'missing.class')

    def test_unreadable_archive(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            broken = pathlib.Path(tmp) / 'broken.jar'
            broken.write_bytes(b'not a zip')
            with self.assertRaises(ArchiveError):
                archive.read_entry(broken, 'x')

    def test_corrupt_entry(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            target = pathlib.Path(tmp) / 'corrupt.jar'
            buffer = io.BytesIO()
            with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_STORED) as jar:
                jar.writestr('a.class', b'original bytes')
            target.write_bytes(buffer.getvalue().replace(b'original bytes', b'tampered bytes'))
            with self.assertRaises(ArchiveError) as caught:
                archive.read_entry(target, 'a.class')
            self.assertEqual(caught.exception.entry, 'a.class')
            with self.assertRaises(ArchiveError):
                archive.read_all(target)


class ConfigTests(unittest.TestCase):
    def test_loader_config_from_dict(self) -> None:
        self.assertEqual(loader_config_from_dict({'type': 'Quilt'}), QuiltConfig())
        forge = loader_config_from_dict({'type': 'forge', 'build': 'recommended', 'verify_installer': False})
        self.assertEqual(forge, ForgeConfig(build='recommended', verify_installer=False))

    def test_unknown_loader(self) -> None:
        with self.assertRaises(ConfigError):
            loader_config_from_dict({'type': 'rift'})

    def test_blank_build(self) -> None:
        with self.assertRaises(ConfigError):
            ForgeConfig(build=' ')

    def test_from_dict_defaults(self) -> None:
        options = LauncherOptions.from_dict({'path': '/tmp/mc', 'instance': 'pack'})
        self.assertEqual(options.version, 'latest_release')
        self.assertEqual(options.download_concurrency, 5)
        self.assertIsNone(options.loader)
        self.assertEqual(options.game_dir, pathlib.Path('/tmp/mc').resolve() / 'instances' / 'pack')

    def test_disabled_loader_is_ignored(self) -> None:
        options = LauncherOptions.from_dict({'path': '/tmp/mc', 'loader': {'enable': False, 'type': 'forge'}})
        self.assertIsNone(options.loader)

    def test_invalid_values(self) -> None:
        with self.assertRaises(ConfigError):
            LauncherOptions.from_dict({})
        with self.assertRaises(ConfigError):
            LauncherOptions.from_dict({'path': '/tmp/mc', 'download_concurrency': 'many'})
        with self.assertRaises(ConfigError):
            LauncherOptions.from_dict({'path': '/tmp/mc', 'timeout': 0})

    def test_load_options_expands_thisdir(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config_path = pathlib.Path(tmp).resolve() / 'config.json'
            config_path.write_text(json.dumps({
                'path': ':thisdir:/.minecraft',
                'version': '1.20.1',
                'loader': {'type': 'fabric', 'build': 'latest'},
                'loader_endpoints': {'mirrors': ['https://example.invalid/maven']},
            }))
            options = load_options(config_path)
        self.assertEqual(options.path, config_path.parent / '.minecraft')
        self.assertEqual(options.loader.type, 'fabric')
        self.assertEqual(options.loader_endpoints.mirrors, ('https://example.invalid/maven',))

    def test_load_options_errors(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            missing = pathlib.Path(tmp) / 'absent.json'
            with self.assertRaises(ConfigError):
                load_options(missing)
            broken = pathlib.Path(tmp) / 'broken.json'
            broken.write_text('{')
            with self.assertRaises(ConfigError):
                load_options(broken)


if __name__ == "__main__":
    unittest.main()
