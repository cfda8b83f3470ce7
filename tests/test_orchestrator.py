import asyncio
import hashlib
import pathlib
import tempfile
import unittest

from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase

from mcinstall.config import Endpoints, LauncherOptions
from mcinstall.errors import OperationCancelled, ResolutionError
from mcinstall.events import Cancelled, Error, EventBus, Finished, Progress, is_terminal
from mcinstall.orchestrator import InstallationOrchestrator

CLIENT = b'client jar bytes'
LIBRARY = b'library jar bytes'
ASSET = b'sound data'
ASSET_HASH = hashlib.sha1(ASSET).hexdigest()
FILES = {'client.jar': CLIENT, 'lib-1.0.jar': LIBRARY}


class OrchestratorTests(AioHTTPTestCase):
    async def get_application(self) -> web.Application:
        self.state = {'hits': [], 'slow_assets': False, 'release': asyncio.Event()}
        app = web.Application()

        async def version_manifest(request: web.Request) -> web.Response:
            return web.json_response({
                'latest': {'release': '1.20.1', 'snapshot': '23w31a'},
                'versions': [{'id': '1.20.1', 'url': f"{self.base}versions/1.20.1.json"}],
            })

        async def version(request: web.Request) -> web.Response:
            return web.json_response({
                'id': '1.20.1',
                'mainClass': 'net.minecraft.client.main.Main',
                'assets': '5',
                'assetIndex': {'id': '5', 'url': f"{self.base}indexes/5.json"},
                'arguments': {'game': ['--username', '${auth_player_name}'], 'jvm': ['-cp', '${classpath}']},
                'downloads': {'client': {'url': f"{self.base}files/client.jar", 'size': len(CLIENT),
                                         'sha1': hashlib.sha1(CLIENT).hexdigest()}},
                'libraries': [{
                    'name': 'com.example:lib:1.0',
                    'downloads': {'artifact': {'path': 'com/example/lib/1.0/lib-1.0.jar',
                                               'url': f"{self.base}files/lib-1.0.jar", 'size': len(LIBRARY),
                                               'sha1': hashlib.sha1(LIBRARY).hexdigest()}},
                }],
            })

        async def asset_index(request: web.Request) -> web.Response:
            return web.json_response({'objects': {'sounds/click.ogg': {'hash': ASSET_HASH, 'size': len(ASSET)}}})

        async def files(request: web.Request) -> web.Response:
            name = request.match_info['name']
            self.state['hits'].append(name)
            return web.Response(body=FILES[name])

        async def resources(request: web.Request) -> web.StreamResponse:
            self.state['hits'].append(request.match_info['hash'])
            if not self.state['slow_assets']:
                return web.Response(body=ASSET)
            response = web.StreamResponse(headers={'Content-Length': str(len(ASSET))})
            await response.prepare(request)
            await response.write(ASSET[:4])
            await self.state['release'].wait()
            try:
                await response.write(ASSET[4:])
            except (ConnectionResetError, RuntimeError):
                pass
            return response

        app.router.add_get('/manifest.json', version_manifest)
        app.router.add_get('/versions/1.20.1.json', version)
        app.router.add_get('/indexes/5.json', asset_index)
        app.router.add_get('/files/{name}', files)
        app.router.add_get('/resources/{prefix}/{hash}', resources)
        return app

    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.base = str(self.server.make_url('/'))
        self._tmp = tempfile.TemporaryDirectory()
        self.root = pathlib.Path(self._tmp.name).resolve()
        self.events = EventBus()
        self.received = []
        self.events.subscribe(self.received.append)

    async def asyncTearDown(self) -> None:
        self.state['release'].set()
        self._tmp.cleanup()
        await super().asyncTearDown()

    def options(self, version: str = 'latest_release') -> LauncherOptions:
        return LauncherOptions(
            path=self.root,
            version=version,
            java_path='/usr/bin/java',
            download_concurrency=2,
            endpoints=Endpoints(version_manifest=f"{self.base}manifest.json", resources=f"{self.base}resources"),
        )

    def terminal_events(self):
        return [e for e in self.received if is_terminal(e)]

    async def test_install_produces_launch_plan(self) -> None:
        plan = await InstallationOrchestrator(self.options(), self.events).run()

        game_jar = self.root / 'versions' / '1.20.1' / '1.20.1.jar'
        library = self.root / 'libraries' / 'com/example/lib/1.0/lib-1.0.jar'
        self.assertEqual(game_jar.read_bytes(), CLIENT)
        self.assertEqual(library.read_bytes(), LIBRARY)
        self.assertEqual((self.root / 'assets' / 'objects' / ASSET_HASH[:2] / ASSET_HASH).read_bytes(), ASSET)
        self.assertTrue((self.root / 'assets' / 'indexes' / '5.json').is_file())
        self.assertTrue((self.root / 'versions' / '1.20.1' / 'natives').is_dir())

        self.assertEqual(plan.classpath, [str(library), str(game_jar)])
        self.assertEqual(plan.main_class, 'net.minecraft.client.main.Main')
        self.assertEqual(plan.java_path, '/usr/bin/java')
        self.assertEqual(plan.asset_index, '5')
        self.assertEqual(plan.assets_dir, self.root / 'assets')
        self.assertEqual(plan.game_arguments, ['--username', '${auth_player_name}'])
        self.assertEqual(self.terminal_events(), [Finished(plan)])

    async def test_second_run_downloads_nothing(self) -> None:
        await InstallationOrchestrator(self.options(), self.events).run()
        self.state['hits'].clear()
        await InstallationOrchestrator(self.options('1.20.1'), self.events).run()
        self.assertEqual(self.state['hits'], [])

    async def test_cancel_before_run(self) -> None:
        orchestrator = InstallationOrchestrator(self.options(), self.events)
        orchestrator.cancel('user closed the launcher')
        with self.assertRaises(OperationCancelled):
            await orchestrator.run()
        self.assertEqual(self.terminal_events(), [Cancelled('user closed the launcher')])
        self.assertFalse((self.root / 'versions').exists())

    async def test_cancel_during_download(self) -> None:
        self.state['slow_assets'] = True
        orchestrator = InstallationOrchestrator(self.options(), self.events)

        def cancel_on_asset_progress(event) -> None:
            if isinstance(event, Progress) and event.label == 'Assets':
                orchestrator.cancel('stop')

        self.events.subscribe(cancel_on_asset_progress)
        try:
            with self.assertRaises(OperationCancelled):
                await orchestrator.run()
        finally:
            self.state['release'].set()

        self.assertEqual(self.terminal_events(), [Cancelled('stop')])
        self.assertFalse(any(isinstance(e, Finished) for e in self.received))

    async def test_unknown_version_is_terminal_error(self) -> None:
        with self.assertRaises(ResolutionError) as caught:
            await InstallationOrchestrator(self.options('0.0.1'), self.events).run()
        self.assertIn('1.20.1', caught.exception.available)
        terminal = self.terminal_events()
        self.assertEqual(len(terminal), 1)
        self.assertIsInstance(terminal[0], Error)
        self.assertIs(terminal[0].detail, caught.exception)

    async def test_filesystem_error_is_terminal_error(self) -> None:
        (self.root / 'versions' / '1.20.1' / '1.20.1.json').mkdir(parents=True)
        orchestrator = InstallationOrchestrator(self.options(), self.events)
        consumer = asyncio.ensure_future(self.consume(self.events))
        await asyncio.sleep(0)

        with self.assertRaises(OSError) as caught:
            await orchestrator.run()

        terminal = self.terminal_events()
        self.assertEqual(len(terminal), 1)
        self.assertIsInstance(terminal[0], Error)
        self.assertTrue(terminal[0].terminal)
        self.assertIs(terminal[0].detail, caught.exception)
        streamed = await asyncio.wait_for(consumer, timeout=1)
        self.assertEqual(streamed[-1], terminal[0])

    @staticmethod
    async def consume(events: EventBus):
        return [event async for event in events.stream()]


if __name__ == "__main__":
    unittest.main()
