import asyncio
import threading

from backend import main


class RecordingServices:
    def __init__(self) -> None:
        self.start_thread = None
        self.loop = None
        self.stopped = False

    def start(self, loop) -> None:
        self.start_thread = threading.get_ident()
        self.loop = loop

    def shutdown(self) -> None:
        self.stopped = True


def test_startup_runs_blocking_setup_off_the_event_loop(monkeypatch) -> None:
    steps = []
    monkeypatch.setattr(main.config, 'validate_runtime_config', lambda: steps.append(threading.get_ident()))
    monkeypatch.setattr(main, 'initialize_database', lambda: steps.append(threading.get_ident()))
    monkeypatch.setattr(main, 'AppServices', RecordingServices)
    monkeypatch.setattr(main.app.state, 'services', None, raising=False)

    async def run_startup():
        await main.startup()
        return threading.get_ident(), asyncio.get_running_loop()

    loop_thread, loop = asyncio.run(run_startup())
    services = main.app.state.services

    assert isinstance(services, RecordingServices)
    assert services.loop is loop
    assert services.start_thread != loop_thread
    assert steps == [services.start_thread, services.start_thread]

    main.shutdown()

    assert services.stopped is True
