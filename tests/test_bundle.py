import hashlib
import pathlib
import tempfile
import unittest

from mcinstall.bundle import BundleReconciler, ManifestEntry, ManifestKind
from mcinstall.events import Check, EventBus


def sha1(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


class ReconcileTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = pathlib.Path(self._tmp.name).resolve()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    async def test_absent_file_is_downloaded(self) -> None:
        entry = ManifestEntry(path='a.jar', sha1='deadbeef', size=10)
        reconciler = BundleReconciler(self.root)
        missing = await reconciler.reconcile([entry])
        self.assertEqual(missing, [entry])
        self.assertEqual(reconciler.total_size(missing), 10)

    async def test_hash_mismatch_is_downloaded(self) -> None:
        (self.root / 'a.jar').write_bytes(b'stale content')
        entry = ManifestEntry(path='a.jar', sha1='deadbeef', size=10)
        missing = await BundleReconciler(self.root).reconcile([entry])
        self.assertEqual(missing, [entry])

    async def test_second_pass_is_empty(self) -> None:
        (self.root / 'libs').mkdir()
        (self.root / 'libs' / 'b.jar').write_bytes(b'hello')
        manifest = [
            ManifestEntry(path='libs/b.jar', sha1=sha1(b'hello'), size=5),
            ManifestEntry(path='versions/1.0/1.0.json', kind=ManifestKind.INLINE, content='{"id": "1.0"}'),
        ]
        reconciler = BundleReconciler(self.root)
        self.assertEqual(await reconciler.reconcile(manifest), [])
        self.assertEqual(await reconciler.reconcile(manifest), [])
        self.assertEqual((self.root / 'versions' / '1.0' / '1.0.json').read_text(), '{"id": "1.0"}')

    async def test_inline_content_is_rewritten(self) -> None:
        target = self.root / 'indexes' / 'x.json'
        target.parent.mkdir()
        target.write_text('old')
        entry = ManifestEntry(path='indexes/x.json', kind=ManifestKind.INLINE, content='new')
        self.assertEqual(await BundleReconciler(self.root).reconcile([entry]), [])
        self.assertEqual(target.read_text(), 'new')

    async def test_entry_without_hash_is_trusted_once_present(self) -> None:
        (self.root / 'c.txt').write_bytes(b'anything')
        missing = await BundleReconciler(self.root).reconcile([ManifestEntry(path='c.txt', size=3)])
        self.assertEqual(missing, [])

    async def test_ignored_existing_file_is_not_verified(self) -> None:
        (self.root / 'options.txt').write_bytes(b'user edited')
        entry = ManifestEntry(path='options.txt', sha1='deadbeef', size=4)
        missing = await BundleReconciler(self.root, ignored=['options.txt']).reconcile([entry])
        self.assertEqual(missing, [])

    async def test_ignored_missing_file_is_still_downloaded(self) -> None:
        entry = ManifestEntry(path='options.txt', sha1='deadbeef', size=4)
        missing = await BundleReconciler(self.root, ignored=['options.txt']).reconcile([entry])
        self.assertEqual(missing, [entry])

    async def test_protected_paths_do_not_match_basenames(self) -> None:
        for relative in ('loader/forge.jar', 'mods/loader'):
            path = self.root / relative
            path.parent.mkdir(parents=True)
            path.write_bytes(b'local')
        nested = ManifestEntry(path='mods/loader', sha1='deadbeef', size=4)
        scoped = ManifestEntry(path='loader/forge.jar', sha1='deadbeef', size=4)
        missing = await BundleReconciler(self.root, protected=['loader']).reconcile([nested, scoped])
        self.assertEqual(missing, [nested])

    async def test_check_events(self) -> None:
        events = EventBus()
        checks = []
        events.subscribe(lambda e: checks.append(e) if isinstance(e, Check) else None)
        manifest = [ManifestEntry(path='a', label='Assets'), ManifestEntry(path='b')]
        await BundleReconciler(self.root, events=events).reconcile(manifest)
        self.assertEqual(checks, [Check(1, 2, 'Assets'), Check(2, 2, 'bundle')])

    async def test_to_tasks(self) -> None:
        entry = ManifestEntry(path='libs/x/y.jar', url='http://example.invalid/y.jar', size=7, label='Libraries')
        task = BundleReconciler(self.root).to_tasks([entry])[0]
        self.assertEqual(task.path, self.root / 'libs' / 'x' / 'y.jar')
        self.assertEqual(task.folder, self.root / 'libs' / 'x')
        self.assertEqual(task.size, 7)


class PruneTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = pathlib.Path(self._tmp.name).resolve()
        for relative in ('a.jar', 'stale.txt', 'old/sub/x.bin', 'saves/world/level.dat', 'keep/inner.txt'):
            path = self.root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b'x')
        (self.root / 'empty').mkdir()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    async def test_prune_removes_unreferenced_leaves(self) -> None:
        reconciler = BundleReconciler(self.root, ignored=['saves', 'inner.txt'])
        deleted = await reconciler.prune([ManifestEntry(path='a.jar')])

        self.assertTrue((self.root / 'a.jar').exists())
        self.assertTrue((self.root / 'saves' / 'world' / 'level.dat').exists())
        self.assertTrue((self.root / 'keep' / 'inner.txt').exists())
        self.assertFalse((self.root / 'stale.txt').exists())
        self.assertFalse((self.root / 'empty').exists())
        self.assertFalse((self.root / 'old').exists())
        self.assertIn(self.root / 'stale.txt', deleted)
        self.assertIn(self.root / 'old' / 'sub' / 'x.bin', deleted)

    async def test_prune_keeps_protected_directories(self) -> None:
        (self.root / 'loader' / 'forge').mkdir(parents=True)
        (self.root / 'loader' / 'forge' / 'forge.jar').write_bytes(b'x')
        (self.root / 'old' / 'loader').write_bytes(b'x')

        await BundleReconciler(self.root, protected=['loader']).prune([ManifestEntry(path='a.jar')])

        self.assertTrue((self.root / 'loader' / 'forge' / 'forge.jar').exists())
        self.assertFalse((self.root / 'old' / 'loader').exists())

    async def test_prune_is_scoped_to_instance(self) -> None:
        instance = self.root / 'instances' / 'pack'
        (instance / 'mods').mkdir(parents=True)
        (instance / 'mods' / 'old.jar').write_bytes(b'x')
        (instance / 'mods' / 'new.jar').write_bytes(b'x')

        reconciler = BundleReconciler(self.root, instance='pack')
        await reconciler.prune([ManifestEntry(path='instances/pack/mods/new.jar')])

        self.assertTrue((instance / 'mods' / 'new.jar').exists())
        self.assertFalse((instance / 'mods' / 'old.jar').exists())
        self.assertTrue((self.root / 'stale.txt').exists())


if __name__ == "__main__":
    unittest.main()
