from luthier.process import (
    CommandResult,
    ExternalCommand,
    SkipReason,
    StepStatus,
    execute_command,
    execute_sequence,
    has_mandatory_failures,
    merge_env,
    run_script,
)


def sh(name, script, **kwargs):
    return ExternalCommand(name=name, program="sh", args=["-c", script], **kwargs)


def test_dry_run_never_spawns(tmp_path):
    marker = tmp_path / "ran"
    result = execute_command(sh("touch", f"touch {marker}"), [], dry_run=True)
    assert result.status is StepStatus.SKIPPED
    assert result.skip_reason is SkipReason.DRY_RUN
    assert result.error == "dry-run mode"
    assert not marker.exists()


def test_success_and_env(tmp_path):
    out = tmp_path / "out"
    result = execute_command(sh("env", f'printf "$FOO" > {out}'), [("FOO", "first"), ("FOO", "bar")], dry_run=False)
    assert result.status is StepStatus.SUCCESS
    assert result.exit_code == 0
    assert out.read_text() == "bar"


def test_failure_reports_exit_code():
    result = execute_command(sh("fail", "exit 3", mandatory=True), [], dry_run=False)
    assert result.status is StepStatus.FAILED
    assert result.exit_code == 3
    assert result.aborts_pipeline


def test_missing_program_is_failed_not_raised():
    command = ExternalCommand(name="ghost", program="/nonexistent/luthier-ghost")
    result = execute_command(command, [], dry_run=False)
    assert result.status is StepStatus.FAILED
    assert result.error


def test_timeout():
    result = execute_command(sh("slow", "sleep 5", timeout_secs=1), [], dry_run=False)
    assert result.status is StepStatus.TIMED_OUT
    assert result.error == "timeout after 1s"


def test_sequence_skips_after_mandatory_failure():
    results = execute_sequence(
        [
            sh("optional-fail", "exit 1"),
            sh("mandatory-fail", "exit 1", mandatory=True),
            sh("never", "exit 0"),
        ],
        [],
        dry_run=False,
    )
    assert [r.status for r in results] == [StepStatus.FAILED, StepStatus.FAILED, StepStatus.SKIPPED]
    assert results[2].skip_reason is SkipReason.PRIOR_MANDATORY_FAILURE
    assert has_mandatory_failures(results)


def test_optional_failure_does_not_abort():
    results = execute_sequence([sh("a", "exit 1"), sh("b", "exit 0")], [], dry_run=False)
    assert [r.status for r in results] == [StepStatus.FAILED, StepStatus.SUCCESS]
    assert not has_mandatory_failures(results)


def test_skipped_result_never_aborts():
    result = CommandResult.skipped(sh("x", "true", mandatory=True), SkipReason.CACHED)
    assert not result.aborts_pipeline


def test_merge_env_overlays_base():
    assert merge_env([("A", "2"), ("B", "3")], base={"A": "1", "C": "4"}) == {"A": "2", "B": "3", "C": "4"}


def test_run_script(tmp_path):
    assert run_script("pre", "   ", str(tmp_path), [], dry_run=False, mandatory=True) is None

    result = run_script("pre", "echo hi > out.txt", str(tmp_path), [], dry_run=False, mandatory=True)
    assert result.status is StepStatus.SUCCESS
    assert result.program == "bash"
    assert (tmp_path / "out.txt").read_text() == "hi\n"
