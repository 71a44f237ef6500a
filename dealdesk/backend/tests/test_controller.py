# tests/test_controller.py
import asyncio

import pytest

from dealflow.domain.stages import Stage
from dealflow.integrations.base import CrmError
from dealflow.service_layer.controller import (
    DealBoard,
    NotificationLog,
    OptimisticStageController,
    TransitionCommand,
    UndoRegistry,
)
from dealflow.service_layer.loaders import load_deals
from dealflow.service_layer.transitions import StageTransitionManager, TransitionStatus


def _controller(crm, *deals):
    log = NotificationLog()
    ctl = OptimisticStageController(StageTransitionManager(crm), DealBoard(deals), notifier=log)
    return ctl, log


@pytest.mark.asyncio
async def test_successful_transition_commits_and_offers_undo(crm, make_deal):
    ctl, log = _controller(crm, make_deal(relation_id="rel-0"))

    cmd = await ctl.request_transition("deal-1", Stage.sent_to_buyer, Stage.buyer_responded)

    assert cmd.status == TransitionStatus.ok
    assert cmd.can_undo
    assert cmd.token and ctl.undo_registry.get(cmd.token) is cmd

    snap = ctl.board.snapshot("deal-1")
    assert snap.stage == Stage.buyer_responded
    assert snap.relation_id == "rel-1"
    assert snap.last_activity_at is not None
    assert ctl.board.view("deal-1") == snap

    assert [n.kind for n in log.items] == ["success"]
    assert log.items[0].undo_token == cmd.token


@pytest.mark.asyncio
async def test_same_stage_drop_does_nothing(crm, make_deal):
    ctl, log = _controller(crm, make_deal(stage=Stage.offer_made))

    cmd = await ctl.request_transition("deal-1", Stage.offer_made, Stage.offer_made)

    assert cmd.status == TransitionStatus.noop
    assert cmd.notification is None
    assert crm.remote_calls == []
    assert log.items == []


@pytest.mark.asyncio
async def test_unknown_deal(crm):
    ctl, log = _controller(crm)
    cmd = await ctl.request_transition("nope", Stage.sent_to_buyer, Stage.buyer_responded)
    assert cmd.status == TransitionStatus.not_found
    assert crm.remote_calls == []


@pytest.mark.asyncio
async def test_view_is_optimistic_while_in_flight(crm, make_deal, gate):
    crm.gate = gate
    ctl, _ = _controller(crm, make_deal())

    task = asyncio.create_task(ctl.request_transition("deal-1", Stage.sent_to_buyer, Stage.showing_scheduled))
    await asyncio.sleep(0)

    assert ctl.is_transitioning("deal-1")
    assert ctl.board.view("deal-1").stage == Stage.showing_scheduled
    assert ctl.board.snapshot("deal-1").stage == Stage.sent_to_buyer

    gate.set()
    cmd = await task
    assert cmd.ok
    assert not ctl.is_transitioning("deal-1")
    assert ctl.board.snapshot("deal-1").stage == Stage.showing_scheduled


@pytest.mark.asyncio
async def test_second_request_for_same_deal_is_rejected(crm, make_deal, gate):
    crm.gate = gate
    ctl, _ = _controller(crm, make_deal())

    first = asyncio.create_task(ctl.request_transition("deal-1", Stage.sent_to_buyer, Stage.buyer_responded))
    await asyncio.sleep(0)

    second = await ctl.request_transition("deal-1", Stage.sent_to_buyer, Stage.offer_made)
    assert second.status == TransitionStatus.conflict
    # only the first request reached the CRM
    assert [c[0] for c in crm.remote_calls] == ["delete", "create"]

    gate.set()
    assert (await first).ok
    assert ctl.board.snapshot("deal-1").stage == Stage.buyer_responded


@pytest.mark.asyncio
async def test_different_deals_move_concurrently(crm, make_deal, gate):
    crm.gate = gate
    ctl, _ = _controller(
        crm,
        make_deal("deal-1", relation_id=None),
        make_deal("deal-2", relation_id=None, contact_id="c-2"),
    )

    t1 = asyncio.create_task(ctl.request_transition("deal-1", Stage.sent_to_buyer, Stage.buyer_responded))
    t2 = asyncio.create_task(ctl.request_transition("deal-2", Stage.sent_to_buyer, Stage.not_interested))
    await asyncio.sleep(0)
    assert ctl.is_transitioning("deal-1") and ctl.is_transitioning("deal-2")

    gate.set()
    r1, r2 = await asyncio.gather(t1, t2)
    assert r1.ok and r2.ok
    assert ctl.board.snapshot("deal-2").stage == Stage.not_interested


@pytest.mark.asyncio
async def test_failure_reverts_view_and_keeps_snapshot(crm, make_deal):
    crm.fail_on["create"] = CrmError("HTTP 500", status_code=500)
    original = make_deal(relation_id="rel-0")
    ctl, log = _controller(crm, original)

    cmd = await ctl.request_transition("deal-1", Stage.sent_to_buyer, Stage.offer_made)

    assert cmd.status == TransitionStatus.remote_error
    assert cmd.outcome.relation_deleted is True
    assert not cmd.can_undo
    assert cmd.token is None
    assert ctl.board.snapshot("deal-1") == original
    assert ctl.board.view("deal-1") == original
    assert [n.kind for n in log.items] == ["error"]
    assert "already removed" in log.items[0].message


@pytest.mark.asyncio
async def test_unexpected_error_reverts_view_and_frees_deal(crm, make_deal):
    crm.fail_on["create"] = RuntimeError("connection pool closed")
    original = make_deal()
    ctl, log = _controller(crm, original)

    with pytest.raises(RuntimeError):
        await ctl.request_transition("deal-1", Stage.sent_to_buyer, Stage.offer_made)

    assert ctl.board.view("deal-1") == original
    assert ctl.board.snapshot("deal-1") == original
    assert log.items == []

    del crm.fail_on["create"]
    assert (await ctl.request_transition("deal-1", Stage.sent_to_buyer, Stage.offer_made)).ok


@pytest.mark.asyncio
async def test_unsaved_deal_fields_are_mentioned_in_success_notice(crm, make_deal):
    crm.fail_on["fields"] = CrmError("HTTP 400: unknown field", status_code=400)
    ctl, log = _controller(crm, make_deal())

    cmd = await ctl.request_transition("deal-1", Stage.sent_to_buyer, Stage.buyer_responded)

    assert cmd.ok and cmd.can_undo
    assert ctl.board.snapshot("deal-1").stage == Stage.buyer_responded
    assert log.items[-1].kind == "success"
    assert "fields not updated" in log.items[-1].message

@pytest.mark.asyncio
async def test_retry_after_partial_failure_succeeds(crm, make_deal):
    # first attempt: delete went through, create failed
    crm.fail_on["create"] = CrmError("HTTP 500", status_code=500)
    ctl, _ = _controller(crm, make_deal(relation_id="rel-0"))
    assert not (await ctl.request_transition("deal-1", Stage.sent_to_buyer, Stage.offer_made)).ok

    # the stale relation id is deleted again (GHL answers 404, which counts as deleted)
    del crm.fail_on["create"]
    cmd = await ctl.request_transition("deal-1", Stage.sent_to_buyer, Stage.offer_made)
    assert cmd.ok
    assert ctl.board.snapshot("deal-1").stage == Stage.offer_made


@pytest.mark.asyncio
async def test_undo_round_trip_restores_stage_with_fresh_relation(crm, make_deal):
    ctl, log = _controller(crm, make_deal(stage=Stage.showing_scheduled, relation_id="rel-0"))

    fwd = await ctl.request_transition("deal-1", Stage.showing_scheduled, Stage.property_viewed)
    back = await fwd.undo()

    assert back.ok and back.is_undo
    snap = ctl.board.snapshot("deal-1")
    assert snap.stage == Stage.showing_scheduled
    assert snap.relation_id == "rel-2"
    assert crm.relations == {"rel-2": "Showing Scheduled"}
    assert log.items[-1].message.startswith("Moved back to")


@pytest.mark.asyncio
async def test_failed_undo_leaves_post_forward_state_and_can_retry(crm, make_deal):
    ctl, log = _controller(crm, make_deal())
    fwd = await ctl.request_transition("deal-1", Stage.sent_to_buyer, Stage.buyer_responded)
    after_forward = ctl.board.snapshot("deal-1")

    crm.fail_on["delete"] = CrmError("HTTP 503", status_code=503)
    failed = await fwd.undo()
    assert failed.status == TransitionStatus.remote_error
    assert ctl.board.snapshot("deal-1") == after_forward
    assert log.items[-1].kind == "error"

    del crm.fail_on["delete"]
    retried = await fwd.undo()
    assert retried.ok
    assert ctl.board.snapshot("deal-1").stage == Stage.sent_to_buyer


@pytest.mark.asyncio
async def test_undo_twice_reports_stale_state(crm, make_deal):
    ctl, _ = _controller(crm, make_deal())
    fwd = await ctl.request_transition("deal-1", Stage.sent_to_buyer, Stage.buyer_responded)
    assert (await fwd.undo()).ok

    again = await fwd.undo()
    assert again.status == TransitionStatus.stale_state
    assert ctl.board.snapshot("deal-1").stage == Stage.sent_to_buyer


def test_undo_registry_is_bounded():
    reg = UndoRegistry(maxsize=2)
    cmds = [TransitionCommand(TransitionStatus.ok, f"d{i}", Stage.sent_to_buyer, Stage.buyer_responded) for i in range(3)]
    tokens = [reg.add(c) for c in cmds]

    assert len(reg) == 2
    assert reg.get(tokens[0]) is None
    assert reg.get(tokens[2]) is cmds[2]


def test_load_deals_skips_deals_in_flight(crm, make_deal):
    ctl, _ = _controller(crm, make_deal())
    ctl._inflight.add("deal-1")
    n = ctl.load_deals([make_deal(stage=Stage.offer_made), make_deal("deal-2")])
    assert n == 1
    assert ctl.board.snapshot("deal-1").stage == Stage.sent_to_buyer
    assert ctl.board.snapshot("deal-2") is not None


@pytest.mark.asyncio
async def test_reloaded_deals_keep_the_moved_stage_and_relation(crm):
    crm.opportunities["pipe-deals"] = [
        {
            "id": "deal-1",
            "pipelineId": "pipe-deals",
            "name": "12 Elm St, Phoenix, AZ 85001",
            "contactId": "c-1",
            "customFields": [
                {"id": "property_record_id", "value": "p-1"},
                {"id": "match_stage", "value": "Sent to Buyer"},
                {"id": "ghl_relation_id", "value": "rel-0"},
            ],
        }
    ]
    crm.relations["rel-0"] = "Sent to Buyer"
    ctl, _ = _controller(crm)

    deals, _ = await load_deals(crm)
    ctl.load_deals(deals)
    assert (await ctl.request_transition("deal-1", Stage.sent_to_buyer, Stage.buyer_responded)).ok

    deals, _ = await load_deals(crm)
    ctl.load_deals(deals)
    reloaded = ctl.board.snapshot("deal-1")
    assert reloaded.stage == Stage.buyer_responded
    assert reloaded.relation_id == "rel-1"

    assert (await ctl.request_transition("deal-1", Stage.buyer_responded, Stage.offer_made)).ok
    assert crm.relations == {"rel-2": "Offer Made"}
