import json

from nodeprep.bootstrap.node.models import CredentialMode
from nodeprep.deploy.executor import run_steps
from nodeprep.deploy.steps import Step
from nodeprep.observers.console import ConsoleObserver
from nodeprep.observers.dispatcher import EventBus
from nodeprep.observers.events import StepSkipped, new_ctx
from nodeprep.observers.jsonfile import JsonFileObserver
from nodeprep.observers.dispatcher import Observer
from nodeprep.utils.ssh_runner import CommandResult


class Capture(Observer):
    def __init__(self): self.events = []
    def notify(self, event): self.events.append(event)


class Broken:
    def notify(self, event): raise RuntimeError("boom")


class OkExecutor:
    def execute(self, command, *, mode):
        return CommandResult(1 if command == "probe" else 0, "")
    def check_login(self, mode, *, connect_timeout=None): return True
    def reset(self): pass
    def close(self): pass


def test_observer_receives_events_in_order():
    cap = Capture()
    steps = [Step("a", "A", probe="probe", apply="apply"), Step("b", "B", probe="done")]
    run_steps(steps, OkExecutor(), host="h", observers=[cap, Broken()], run_id="run-1")

    kinds = [e.__class__.__name__ for e in cap.events]
    assert kinds == [
        "RunStarted", "ModeDetected",
        "StepStarted", "StepApplied",
        "StepStarted", "StepSkipped",
        "RunSummary",
    ]
    assert {e.run_id for e in cap.events} == {"run-1"}
    assert cap.events[1].mode == CredentialMode.ROOT_PASSWORD.value
    assert cap.events[-1].applied == 1 and cap.events[-1].skipped == 1


def test_json_file_observer_writes_jsonl(tmp_path):
    path = tmp_path / "logs" / "run.jsonl"
    bus = EventBus([JsonFileObserver(path)])
    bus.emit(StepSkipped(name="create-user", detail="exists", **new_ctx("h", run_id="r")))

    line = json.loads(path.read_text().splitlines()[0])
    assert line["type"] == "StepSkipped"
    assert line["name"] == "create-user"
    assert line["run_id"] == "r"


def test_console_observer_prints_status(capsys):
    ConsoleObserver().notify(StepSkipped(name="x", detail="User kez already exists", **new_ctx("h")))
    assert "✓ User kez already exists" in capsys.readouterr().out
