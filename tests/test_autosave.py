import pytest

from claritypath.autosave import FieldAutosave, SaveStatus, WorkbookAutosave
from claritypath.workbook import UnknownWorkbookField


class Recorder:
    def __init__(self, fail_with=""):
        self.calls = []
        self.fail_with = fail_with

    def __call__(self, field_key, value):
        self.calls.append((field_key, value))
        if self.fail_with:
            return False, self.fail_with
        return True, ""


def test_rapid_edits_coalesce_into_one_save(scheduler):
    persist = Recorder()
    saver = WorkbookAutosave(persist, scheduler, delay_ms=1000)
    for text in ["O", "Os", "Oso", "Osol"]:
        saver.edit("capsula_desafio", text)
        scheduler.advance(0.3)
    assert persist.calls == []
    assert saver.values()["capsula_desafio"] == "Osol"

    scheduler.advance(1.0)
    assert persist.calls == [("capsula_desafio", "Osol")]
    assert saver.statuses()["capsula_desafio"] is SaveStatus.SAVED


def test_fields_save_independently(scheduler):
    persist = Recorder()
    saver = WorkbookAutosave(persist, scheduler, delay_ms=1000)
    saver.edit("capsula_desafio", "a")
    scheduler.advance(0.5)
    saver.edit("roda_energia", "7")
    scheduler.advance(0.6)
    assert persist.calls == [("capsula_desafio", "a")]
    # Editing another key must not delay the pending one.
    saver.edit("capsula_futuro", "b")
    scheduler.advance(0.5)
    assert persist.calls == [("capsula_desafio", "a"), ("roda_energia", "7")]
    scheduler.advance(0.5)
    assert sorted(persist.calls) == [("capsula_desafio", "a"), ("capsula_futuro", "b"), ("roda_energia", "7")]


def test_quiet_period_restarts_on_each_edit(scheduler):
    persist = Recorder()
    field = FieldAutosave("maior_insight", persist, scheduler, delay_ms=1000)
    field.edit("x")
    scheduler.advance(0.9)
    field.edit("xy")
    scheduler.advance(0.9)
    assert persist.calls == []
    assert field.pending
    scheduler.advance(0.1)
    assert persist.calls == [("maior_insight", "xy")]
    assert not field.pending
    assert field.saved_value == "xy"


def test_failure_marks_error_and_does_not_retry(scheduler, caplog):
    persist = Recorder(fail_with="HTTP 500: boom")
    statuses = []
    field = FieldAutosave("plano_acoes", persist, scheduler, delay_ms=1000, on_status=lambda k, s, e: statuses.append((s, e)))
    field.edit("text")
    scheduler.advance(1)
    assert field.status is SaveStatus.ERROR
    assert field.last_error == "HTTP 500: boom"
    assert statuses[-1] == (SaveStatus.ERROR, "HTTP 500: boom")
    assert "failed" in caplog.text
    scheduler.advance(60)
    assert len(persist.calls) == 1

    persist.fail_with = ""
    field.edit("text again")
    scheduler.advance(1)
    assert field.status is SaveStatus.SAVED
    assert field.last_error == ""


def test_persist_exception_is_contained(scheduler):
    def explode(field_key, value):
        raise ConnectionError("network down")

    field = FieldAutosave("plano_medicao", explode, scheduler, delay_ms=500)
    field.edit("v")
    scheduler.advance(0.5)
    assert field.status is SaveStatus.ERROR
    assert "network down" in field.last_error


def test_status_sequence(scheduler):
    seen = []
    field = FieldAutosave("roda_pares", Recorder(), scheduler, on_status=lambda k, s, e: seen.append(s))
    field.edit("5")
    scheduler.advance(5)
    assert seen == [SaveStatus.PENDING, SaveStatus.SAVING, SaveStatus.SAVED]


def test_unknown_field_is_rejected(scheduler):
    saver = WorkbookAutosave(Recorder(), scheduler)
    with pytest.raises(UnknownWorkbookField):
        saver.edit("not_a_field", "x")


def test_flush_saves_pending_edits_now(scheduler):
    persist = Recorder()
    saver = WorkbookAutosave(persist, scheduler, delay_ms=1000)
    saver.edit("matriz_forcas", "foco")
    saver.edit("matriz_paixoes", "ensinar")
    assert saver.flush() == 2
    assert sorted(persist.calls) == [("matriz_forcas", "foco"), ("matriz_paixoes", "ensinar")]
    scheduler.advance(5)
    assert len(persist.calls) == 2
    assert saver.flush() == 0


def test_close_flushes_and_blocks_further_edits(scheduler):
    persist = Recorder()
    saver = WorkbookAutosave(persist, scheduler, delay_ms=1000)
    saver.edit("mensagem_futuro", "oi")
    saver.close()
    assert persist.calls == [("mensagem_futuro", "oi")]
    assert scheduler.pending == 0
    with pytest.raises(RuntimeError):
        saver.edit("mensagem_futuro", "de novo")


def test_close_without_flush_drops_pending(scheduler):
    persist = Recorder()
    saver = WorkbookAutosave(persist, scheduler, delay_ms=1000)
    saver.edit("mensagem_futuro", "oi")
    saver.close(flush=False)
    scheduler.advance(5)
    assert persist.calls == []
    assert saver.statuses()["mensagem_futuro"] is SaveStatus.IDLE


def test_initial_values_are_visible_before_edits(scheduler):
    saver = WorkbookAutosave(Recorder(), scheduler, initial_values={"roda_energia": "8"})
    assert saver.values() == {"roda_energia": "8"}
    assert saver.field("roda_energia").value == "8"


def test_edit_during_save_does_not_cancel_it(scheduler):
    saved = []

    def persist(field_key, value):
        if value == "first":
            # The user keeps typing while the request is on the wire.
            field.edit("second")
        saved.append(value)
        return True, ""

    field = FieldAutosave("plano_prioridade", persist, scheduler, delay_ms=1000)
    field.edit("first")
    scheduler.advance(1)
    assert saved == ["first"]
    assert field.status is SaveStatus.PENDING
    scheduler.advance(1)
    assert saved == ["first", "second"]
    assert field.status is SaveStatus.SAVED
    assert field.saved_value == "second"


def test_failed_save_with_newer_edit_stays_pending(scheduler):
    attempts = []

    def persist(field_key, value):
        attempts.append(value)
        if value == "old":
            field.edit("new")
            return False, "HTTP 500: boom"
        return True, ""

    field = FieldAutosave("plano_prioridade", persist, scheduler, delay_ms=1000)
    field.edit("old")
    scheduler.advance(1)
    assert field.status is SaveStatus.PENDING
    assert field.last_error == "HTTP 500: boom"
    scheduler.advance(1)
    assert attempts == ["old", "new"]
    assert field.status is SaveStatus.SAVED
    assert field.last_error == ""
