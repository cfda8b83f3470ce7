import json
import unittest

from mcinstall.errors import ArchiveError
from mcinstall.loader.profile import InstallProfile, ProcessorStep


class InstallProfileTests(unittest.TestCase):
    def test_legacy_layout(self) -> None:
        raw = {
            'install': {'path': 'net.minecraftforge:forge:1.12.2-14.23.5.2860', 'filePath': 'forge-universal.jar'},
            'versionInfo': {'id': '1.12.2-forge-14.23.5.2860', 'libraries': [{'name': 'a:b:1'}]},
        }
        profile = InstallProfile.from_installer_json(raw, lambda name: self.fail('no entry should be read'))
        self.assertEqual(profile.id, '1.12.2-forge-14.23.5.2860')
        self.assertEqual(profile.file_path, 'forge-universal.jar')
        self.assertEqual(profile.processors, [])

    def test_modern_layout_reads_version_entry(self) -> None:
        entries = {'version.json': json.dumps({'id': '1.20.1-forge-47.1.0', 'mainClass': 'cpw.Main'}).encode()}
        raw = {
            'json': '/version.json',
            'path': 'net.minecraftforge:forge:1.20.1-47.1.0',
            'data': {'SIDE': {'client': 'client', 'server': 'server'}},
            'processors': [{'jar': 'x:y:1', 'args': ['--a'], 'sides': ['server']}, {'jar': 'x:z:1'}],
        }
        profile = InstallProfile.from_installer_json(raw, entries.__getitem__)
        self.assertEqual(profile.version['mainClass'], 'cpw.Main')
        self.assertEqual(len(profile.processors), 2)
        self.assertFalse(profile.processors[0].applies_to('client'))
        self.assertTrue(profile.processors[1].applies_to('client'))
        self.assertEqual(profile.data['SIDE']['client'], 'client')

    def test_missing_version_entry_name(self) -> None:
        with self.assertRaises(ArchiveError):
            InstallProfile.from_installer_json({'processors': []}, lambda name: b'{}')

    def test_libraries_are_merged_first_wins(self) -> None:
        profile = InstallProfile(
            install={'libraries': [{'name': 'a:b:1', 'from': 'install'}, {'name': 'c:d:2'}]},
            version={'id': 'x', 'libraries': [{'name': 'a:b:1', 'from': 'version'}, {'name': 'e:f:3'}]},
        )
        names = [lib['name'] for lib in profile.libraries]
        self.assertEqual(names, ['a:b:1', 'e:f:3', 'c:d:2'])
        self.assertEqual(profile.libraries[0]['from'], 'version')

    def test_plain_version_json(self) -> None:
        profile = InstallProfile.from_version_json({'id': 'fabric-loader-0.15.0-1.20.1', 'libraries': []})
        self.assertEqual(profile.install, {})
        self.assertEqual(profile.data, {})
        self.assertIsNone(profile.path)


class ProcessorStepTests(unittest.TestCase):
    def test_sides_absent_means_every_side(self) -> None:
        step = ProcessorStep.from_dict({'jar': 'x:y:1', 'args': ['--flag', 3]})
        self.assertTrue(step.applies_to('client'))
        self.assertEqual(step.args, ['--flag', '3'])
        self.assertEqual(step.classpath, [])


if __name__ == "__main__":
    unittest.main()
