import pytest

from nodeprep.bootstrap.node.models import CredentialMode
from nodeprep.deploy.executor import detect_mode, run_steps
from nodeprep.deploy.steps import RunState, Step, StepStatus
from nodeprep.errors import CommandFailure, ConnectivityError
from nodeprep.utils.ssh_runner import CommandResult

ROOT = CredentialMode.ROOT_PASSWORD
USER = CredentialMode.KEY_BASED_USER


class ScriptedExecutor:
    """Answers from a table; anything unknown succeeds."""

    def __init__(self, responses=None, logins=None):
        self.responses = responses or {}
        self.logins = logins or {}
        self.calls = []
        self.login_calls = []
        self.resets = 0

    def execute(self, command, *, mode):
        self.calls.append((command, mode))
        r = self.responses.get(command, CommandResult(0, ""))
        if isinstance(r, Exception):
            raise r
        return r

    def put_text(self, content, path, *, mode):
        self.calls.append((f"upload {path}", mode))
        self.uploaded = (content, path)

    def check_login(self, mode, *, connect_timeout=None):
        self.login_calls.append(mode)
        answer = self.logins.get(mode, True)
        if isinstance(answer, list):
            return answer.pop(0) if answer else False
        return answer

    def reset(self):
        self.resets += 1

    def close(self):
        pass


class Capture:
    def __init__(self): self.events = []
    def notify(self, event): self.events.append(event)


FAIL = CommandResult(1, "", "nope")


def test_probe_true_skips_apply():
    ex = ScriptedExecutor()
    report = run_steps([Step("a", "A", probe="test -f /x", apply="touch /x")], ex, host="h", mode=ROOT)
    assert report.outcomes[0].status is StepStatus.SKIPPED
    assert ex.calls == [("test -f /x", ROOT)]


def test_probe_false_applies():
    ex = ScriptedExecutor({"test -f /x": FAIL})
    report = run_steps([Step("a", "A", probe="test -f /x", apply="touch /x")], ex, host="h", mode=ROOT)
    assert report.outcomes[0].status is StepStatus.APPLIED
    assert [c for c, _ in ex.calls] == ["test -f /x", "touch /x"]


def test_apply_failure_aborts_run_with_step_name():
    ex = ScriptedExecutor({"probe": FAIL, "apply": CommandResult(100, "", "E: Unable to locate package\n")})
    steps = [
        Step("first", "First", probe="probe", apply="apply"),
        Step("second", "Second", apply="never"),
    ]
    with pytest.raises(CommandFailure) as ei:
        run_steps(steps, ex, host="h", mode=ROOT)

    err = ei.value
    assert err.step == "first"
    assert err.exit_code == 100
    assert "Unable to locate package" in str(err)
    assert "never" not in [c for c, _ in ex.calls]
    assert [o.status for o in err.report.outcomes] == [StepStatus.FAILED]


def test_probe_only_step_fails_when_check_fails():
    ex = ScriptedExecutor({"command -v npm": FAIL})
    with pytest.raises(CommandFailure, match="Checking npm"):
        run_steps([Step("npm", "Checking npm", probe="command -v npm")], ex, host="h", mode=USER)


def test_callable_probe_receives_executor_and_mode():
    seen = []

    def probe(executor, mode):
        seen.append(mode)
        return executor.execute("node --version", mode=mode).stdout.startswith("v20")

    ex = ScriptedExecutor({"node --version": CommandResult(0, "v20.1.0\n")})
    report = run_steps([Step("node", "Node", probe=probe, apply="install")], ex, host="h", mode=USER)
    assert seen == [USER]
    assert report.outcomes[0].status is StepStatus.SKIPPED


def test_report_command_attaches_detail():
    ex = ScriptedExecutor({"git --version": CommandResult(0, "git version 2.39.2\n")})
    report = run_steps(
        [Step("git", "Git", probe="command -v git", apply="x", report="git --version")],
        ex, host="h", mode=USER,
    )
    assert report.outcomes[0].detail == "git version 2.39.2"


def test_requires_mode_skips_without_touching_host():
    ex = ScriptedExecutor()
    step = Step("lock", "Lock", probe="p", apply="a", requires_mode=ROOT)
    report = run_steps([step], ex, host="h", mode=USER)
    assert report.outcomes[0].status is StepStatus.SKIPPED
    assert ex.calls == []


def test_run_as_overrides_mode_for_one_step():
    ex = ScriptedExecutor()
    steps = [
        Step("check", "Check", probe="echo hi", run_as=USER),
        Step("next", "Next", apply="true"),
    ]
    run_steps(steps, ex, host="h", mode=ROOT)
    assert ex.calls == [("echo hi", USER), ("true", ROOT)]


def test_tolerated_disconnect_then_mode_switch(fast_options):
    ex = ScriptedExecutor({"restart": ConnectivityError("reset by peer")})
    cap = Capture()
    steps = [
        Step("restart", "Restart", apply="restart", tolerate_disconnect=True, verify_as=USER),
        Step("after", "After", apply="after"),
    ]
    report = run_steps(steps, ex, host="h", mode=ROOT, options=fast_options, observers=[cap])

    assert report.mode is USER
    assert ex.resets == 1
    assert ex.calls[-1] == ("after", USER)
    kinds = [e.__class__.__name__ for e in cap.events]
    assert "DisconnectTolerated" in kinds
    assert "ModeSwitched" in kinds


def test_tolerated_nonzero_exit_is_masked(fast_options):
    ex = ScriptedExecutor({"restart": CommandResult(255, "", "")})
    step = Step("restart", "Restart", apply="restart", tolerate_disconnect=True)
    report = run_steps([step], ex, host="h", mode=ROOT, options=fast_options)
    assert report.outcomes[0].status is StepStatus.APPLIED


def test_untolerated_disconnect_is_fatal():
    ex = ScriptedExecutor({"apply": ConnectivityError("gone")})
    with pytest.raises(ConnectivityError) as ei:
        run_steps([Step("s", "S", apply="apply")], ex, host="h", mode=ROOT)
    assert ei.value.step == "s"


def test_verification_polls_until_login_works(fast_options):
    ex = ScriptedExecutor(logins={USER: [False, False, True]})
    step = Step("restart", "Restart", apply="restart", tolerate_disconnect=True, verify_as=USER)
    report = run_steps([step], ex, host="h", mode=ROOT, options=fast_options)
    assert ex.login_calls == [USER, USER, USER]
    assert report.mode is USER


def test_verification_failure_stops_run(fast_options):
    ex = ScriptedExecutor(logins={USER: False})
    steps = [
        Step("restart", "Restart", apply="restart", tolerate_disconnect=True, verify_as=USER),
        Step("ufw", "UFW", apply="ufw enable"),
    ]
    with pytest.raises(ConnectivityError, match="manually") as ei:
        run_steps(steps, ex, host="h", mode=ROOT, options=fast_options)

    assert len(ex.login_calls) == fast_options.reconnect_attempts
    assert "ufw enable" not in [c for c, _ in ex.calls]
    assert ei.value.report.mode is ROOT


def test_probes_are_never_cached():
    ex = ScriptedExecutor({"p": FAIL})
    step = Step("s", "S", probe="p", apply="a")
    run_steps([step], ex, host="h", mode=ROOT)
    ex.responses["p"] = CommandResult(0, "")
    report = run_steps([step], ex, host="h", mode=ROOT)
    assert report.outcomes[0].status is StepStatus.SKIPPED
    assert [c for c, _ in ex.calls] == ["p", "a", "p"]


def test_detect_mode():
    assert detect_mode(ScriptedExecutor(logins={ROOT: True})) is ROOT
    assert detect_mode(ScriptedExecutor(logins={ROOT: False})) is USER


def test_run_detects_mode_when_not_given():
    ex = ScriptedExecutor(logins={ROOT: False})
    report = run_steps([Step("s", "S", apply="a")], ex, host="h")
    assert ex.login_calls == [ROOT]
    assert ex.calls == [("a", USER)]
    assert report.mode is USER


def test_run_state_only_moves_root_to_user():
    state = RunState(ROOT)
    assert state.switch_to(USER) is ROOT
    assert state.mode is USER and state.switched
    with pytest.raises(ValueError):
        state.switch_to(ROOT)
    with pytest.raises(ValueError):
        RunState(USER).switch_to(ROOT)


def test_step_needs_probe_or_apply():
    with pytest.raises(ValueError):
        Step("empty", "Empty")


def test_upload_runs_before_apply_in_current_mode():
    ex = ScriptedExecutor({"probe": FAIL})
    step = Step("key", "Key", probe="probe", upload=("ssh-ed25519 AAAA\n", "/tmp/k"), apply="mv /tmp/k /k")
    run_steps([step], ex, host="h", mode=USER)

    assert ex.uploaded == ("ssh-ed25519 AAAA\n", "/tmp/k")
    assert ex.calls == [("probe", USER), ("upload /tmp/k", USER), ("mv /tmp/k /k", USER)]


def test_upload_without_apply_is_rejected():
    with pytest.raises(ValueError, match="no apply"):
        Step("bad", "Bad", probe="true", upload=("x", "/x"))


def test_login_that_must_be_refused_aborts_before_mode_switch(fast_options):
    ex = ScriptedExecutor(logins={USER: True, ROOT: True})
    steps = [
        Step("restart", "Restart", apply="restart", tolerate_disconnect=True, verify_as=USER, reject_as=ROOT),
        Step("after", "After", apply="after"),
    ]
    with pytest.raises(ConnectivityError, match="still accepted") as ei:
        run_steps(steps, ex, host="h", mode=ROOT, options=fast_options)

    assert ei.value.step == "restart"
    assert ei.value.report.mode is ROOT
    assert ex.login_calls == [USER, ROOT]
    assert "after" not in [c for c, _ in ex.calls]


def test_refused_login_lets_run_continue_in_new_mode(fast_options):
    ex = ScriptedExecutor(logins={USER: True, ROOT: False})
    steps = [
        Step("restart", "Restart", apply="restart", tolerate_disconnect=True, verify_as=USER, reject_as=ROOT),
        Step("after", "After", apply="after"),
    ]
    report = run_steps(steps, ex, host="h", mode=ROOT, options=fast_options)

    assert report.ok and report.mode is USER
    assert ex.calls[-1] == ("after", USER)
