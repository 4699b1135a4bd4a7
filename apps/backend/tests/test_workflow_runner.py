import asyncio
import sys
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from leadflow.simulator import create_simulator
from pydantic import ValidationError

from leadflow.simulator.failures import FailureConfig, FailureRule, RecipientError, ServiceError
from leadflow.workflow.channels import DeliveryChannels
from leadflow.workflow.interpreter import (
    ExecutionContext,
    render_lead_tokens,
    resolve_handoff_channel,
    resolve_sms_recipient,
    wait_duration,
)
from leadflow.workflow.report import ExecutionStep
from leadflow.workflow.runner import resolve_resume_node, run_workflow
from leadflow.workflow.schema import Lead, RecipientOverrides
from leadflow.workflow.validation import validate_definition

# Monday 10:00 in Brussels
MONDAY_MORNING = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
SATURDAY_MORNING = datetime(2024, 1, 6, 9, 0, tzinfo=timezone.utc)

OFFICE_HOURS = {"enabled": True, "startTime": "09:00", "endTime": "17:00", "allowedDays": [1, 2, 3, 4, 5]}


def follow_up_definition(send_window: dict | None = None) -> dict:
    definition = {
        "nodes": [
            {"id": "trigger", "type": "manual-trigger", "data": {}},
            {"id": "sms", "type": "send-sms", "data": {"message": "Hi {{lead.name}}", "to": "{{lead.phone}}"}},
            {"id": "wait", "type": "wait", "data": {"amount": 1, "unit": "hours"}},
            {"id": "email", "type": "send-email", "data": {"subject": "Follow up", "body": "Still keen, {{lead.name}}?"}},
        ],
        "edges": [
            {"source": "trigger", "target": "sms"},
            {"source": "sms", "target": "wait"},
            {"source": "wait", "target": "email"},
        ],
    }
    if send_window is not None:
        definition["settings"] = {"sendWindow": send_window}
    return definition


def step(node_id: str, status: str = "success", **output) -> ExecutionStep:
    return ExecutionStep(node_id=node_id, node_type="x", status=status, output=output)


class ResumePointTests(unittest.TestCase):
    def setUp(self) -> None:
        self.chain = validate_definition(follow_up_definition())

    def test_empty_history_starts_at_trigger(self):
        self.assertEqual(resolve_resume_node(self.chain, []).node_id, "trigger")

    def test_after_last_success(self):
        point = resolve_resume_node(self.chain, [step("trigger"), step("sms")])
        self.assertEqual(point.node_id, "wait")
        self.assertIsNone(point.resume_at)

    def test_failed_node_is_retried(self):
        point = resolve_resume_node(self.chain, [step("trigger"), step("sms", "failed", error="boom")])
        self.assertEqual(point.node_id, "sms")

    def test_paused_wait_is_replayed_with_due_time(self):
        due = "2024-01-01T10:00:00+00:00"
        point = resolve_resume_node(self.chain, [step("trigger"), step("sms"), step("wait", paused=True, resumeAt=due)])
        self.assertEqual(point.node_id, "wait")
        self.assertEqual(point.resume_at, datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc))

    def test_resumed_wait_moves_on(self):
        history = [step("trigger"), step("sms"), step("wait", paused=True), step("wait", resumed=True)]
        self.assertEqual(resolve_resume_node(self.chain, history).node_id, "email")

    def test_complete_chain(self):
        history = [step("trigger"), step("sms"), step("wait"), step("email")]
        point = resolve_resume_node(self.chain, history)
        self.assertTrue(point.complete)

    def test_history_of_removed_nodes_restarts(self):
        self.assertEqual(resolve_resume_node(self.chain, [step("deleted-node")]).node_id, "trigger")


class InterpreterHelperTests(unittest.TestCase):
    def setUp(self) -> None:
        _, self.channels = create_simulator()

    def test_render_lead_tokens(self):
        lead = Lead(name="Ada", phone="+32470000000")
        self.assertEqual(
            render_lead_tokens("Hi {{lead.name}}, {{ LEAD_PHONE }} / {{lead.email}}", lead),
            "Hi Ada, +32470000000 / ",
        )

    def test_sms_recipient_precedence(self):
        lead = Lead(phone="+1000")
        context = ExecutionContext(channels=self.channels, lead=lead)
        self.assertEqual(resolve_sms_recipient("{{lead.phone}}", context), "+1000")
        self.assertEqual(resolve_sms_recipient("", context), "+1000")
        self.assertEqual(resolve_sms_recipient("+2000", context), "+2000")

        context.overrides = RecipientOverrides(sms_to_override="+3000")
        self.assertEqual(resolve_sms_recipient("+2000", context), "+3000")

    def test_handoff_channel_inference(self):
        context = ExecutionContext(channels=self.channels, lead=Lead(email="a@b.c"))
        self.assertEqual(resolve_handoff_channel(context), "EMAIL")

        context = ExecutionContext(channels=self.channels, lead=Lead(email="a@b.c", phone="+1"))
        self.assertEqual(resolve_handoff_channel(context), "SMS")
        context.last_delivery_channel = "EMAIL"
        self.assertEqual(resolve_handoff_channel(context), "EMAIL")

        context = ExecutionContext(channels=self.channels, lead=Lead(phone="+1", channel="EMAIL"))
        self.assertEqual(resolve_handoff_channel(context), "EMAIL")

    def test_wait_duration(self):
        self.assertEqual(wait_duration(90, "minutes"), timedelta(minutes=90))
        self.assertEqual(wait_duration(2, "days"), timedelta(days=2))


class RunWorkflowTests(unittest.TestCase):
    def test_pauses_at_wait_after_sending_sms(self):
        outbox, channels = create_simulator()
        report = asyncio.run(
            run_workflow(
                follow_up_definition(),
                channels,
                lead=Lead(name="Ada", phone=" +32470000000 "),
                now=MONDAY_MORNING,
            )
        )

        self.assertEqual(report.status, "success")
        self.assertTrue(report.paused)
        self.assertEqual(report.paused_node_id, "wait")
        self.assertEqual(report.resume_at, MONDAY_MORNING + timedelta(hours=1))
        self.assertEqual([s.node_id for s in report.steps], ["trigger", "sms", "wait"])

        wait = report.steps[-1]
        self.assertTrue(wait.output["paused"])
        self.assertEqual(wait.output["amount"], 1)
        self.assertEqual(wait.output["unit"], "hours")

        sms = outbox.for_channel("sms")
        self.assertEqual(len(sms), 1)
        self.assertEqual(sms[0].to, "+32470000000")
        self.assertEqual(sms[0].body, "Hi Ada")
        self.assertEqual(report.steps[1].output["provider"], "simulator")

    def test_resume_after_elapsed_wait_fails_without_email(self):
        outbox, channels = create_simulator()
        due = MONDAY_MORNING + timedelta(hours=1)
        report = asyncio.run(
            run_workflow(
                follow_up_definition(),
                channels,
                lead=Lead(phone="+32470000000"),
                start_node_id="wait",
                resume_at=due,
                now=due + timedelta(minutes=5),
            )
        )

        self.assertEqual(report.status, "failed")
        self.assertEqual([s.node_id for s in report.steps], ["wait", "email"])
        self.assertTrue(report.steps[0].output["resumed"])
        self.assertEqual(report.steps[1].output["errorType"], "missing_recipient")
        self.assertEqual(report.error.node_id, "email")
        self.assertEqual(outbox.messages, [])

    def test_replayed_wait_before_due_time_pauses_again_with_same_due_time(self):
        _, channels = create_simulator()
        due = MONDAY_MORNING + timedelta(hours=1)
        reports = [
            asyncio.run(
                run_workflow(
                    follow_up_definition(),
                    channels,
                    lead=Lead(phone="+1"),
                    start_node_id="wait",
                    resume_at=due,
                    now=MONDAY_MORNING + timedelta(minutes=minutes),
                )
            )
            for minutes in (10, 20)
        ]
        for report in reports:
            self.assertTrue(report.paused)
            self.assertEqual(len(report.steps), 1)
            self.assertEqual(report.paused_node_id, "wait")
            self.assertEqual(report.resume_at, due)

    def test_preview_mode_runs_through_waits(self):
        outbox, channels = create_simulator()
        report = asyncio.run(
            run_workflow(
                follow_up_definition(OFFICE_HOURS),
                channels,
                lead=Lead(name="Ada", phone="+1", email="ADA@example.com "),
                pause_at_wait=False,
                ignore_send_window=True,
                now=SATURDAY_MORNING,
            )
        )
        self.assertEqual(report.status, "success")
        self.assertFalse(report.paused)
        self.assertEqual(len(report.steps), 4)
        self.assertNotIn("paused", report.steps[2].output)
        email = outbox.for_channel("email")[0]
        self.assertEqual(email.to, "ada@example.com")
        self.assertEqual(email.body, "Still keen, Ada?")

    def test_actions_outside_send_window_are_skipped_and_chain_advances(self):
        outbox, channels = create_simulator()
        report = asyncio.run(
            run_workflow(
                follow_up_definition(OFFICE_HOURS),
                channels,
                lead=Lead(phone="+1"),
                now=SATURDAY_MORNING,
            )
        )
        self.assertEqual(report.status, "success")
        sms_step = report.steps[1]
        self.assertEqual(sms_step.status, "success")
        self.assertTrue(sms_step.skipped)
        self.assertEqual(sms_step.output["reason"], "Outside configured send window")
        self.assertEqual(sms_step.output["sendWindow"]["allowedDays"], [1, 2, 3, 4, 5])
        # the wait is not gated by the window
        self.assertEqual(report.paused_node_id, "wait")
        self.assertEqual(outbox.messages, [])

    def test_inside_send_window_sends(self):
        outbox, channels = create_simulator()
        asyncio.run(
            run_workflow(follow_up_definition(OFFICE_HOURS), channels, lead=Lead(phone="+1"), now=MONDAY_MORNING)
        )
        self.assertEqual(len(outbox.for_channel("sms")), 1)

    def test_delivery_failure_stops_the_chain(self):
        failures = FailureConfig(
            rules={"send_sms": FailureRule(error_type="invalid_number", message="Unknown number")}
        )
        _, channels = create_simulator(failures)
        report = asyncio.run(run_workflow(follow_up_definition(), channels, lead=Lead(phone="+1")))

        self.assertEqual(report.status, "failed")
        self.assertEqual(len(report.steps), 2)
        self.assertEqual(report.steps[1].output["errorType"], "invalid_number")
        self.assertIn("Unknown number", report.error.message)

    def test_slow_delivery_times_out(self):
        async def slow_sms(*, to, message):
            await asyncio.sleep(1)
            return {}

        _, sim = create_simulator()
        channels = DeliveryChannels(send_email=sim.send_email, send_sms=slow_sms)
        report = asyncio.run(
            run_workflow(follow_up_definition(), channels, lead=Lead(phone="+1"), timeout_seconds=0.01)
        )
        self.assertEqual(report.status, "failed")
        self.assertEqual(report.steps[-1].output["errorType"], "timeout")

    def test_unexpected_collaborator_error_is_a_node_failure(self):
        async def broken_sms(*, to, message):
            raise RuntimeError("socket closed")

        _, sim = create_simulator()
        channels = DeliveryChannels(send_email=sim.send_email, send_sms=broken_sms)
        report = asyncio.run(run_workflow(follow_up_definition(), channels, lead=Lead(phone="+1")))
        self.assertEqual(report.status, "failed")
        self.assertEqual(report.steps[-1].output["error"], "socket closed")

    def test_agent_handoff_uses_last_delivery_channel(self):
        outbox, channels = create_simulator()
        definition = {
            "nodes": [
                {"id": "t", "type": "voicemail-trigger"},
                {"id": "email", "type": "send-email", "data": {"subject": "Hi", "body": "Hello", "to": "lead.email"}},
                {"id": "agent", "type": "agent-handoff", "data": {"agentId": "closer", "notes": "Be brief"}},
            ],
            "edges": [{"source": "t", "target": "email"}, {"source": "email", "target": "agent"}],
        }
        report = asyncio.run(
            run_workflow(definition, channels, lead=Lead(name="Ada", phone="+1", email="ada@example.com"))
        )
        self.assertEqual(report.status, "success")
        agent_step = report.steps[-1]
        self.assertEqual(agent_step.output["agentId"], "closer")
        self.assertEqual(agent_step.output["channel"], "EMAIL")
        self.assertIn("Ada", agent_step.output["suggestedReply"])
        self.assertEqual(outbox.for_channel("agent")[0].metadata["notes"], "Be brief")

    def test_agent_handoff_without_collaborator_fails(self):
        _, sim = create_simulator()
        channels = DeliveryChannels(send_email=sim.send_email, send_sms=sim.send_sms)
        definition = {
            "nodes": [
                {"id": "t", "type": "manual-trigger"},
                {"id": "agent", "type": "agent-handoff", "data": {"agentId": "closer"}},
            ],
            "edges": [{"source": "t", "target": "agent"}],
        }
        report = asyncio.run(run_workflow(definition, channels, lead=Lead(phone="+1")))
        self.assertEqual(report.status, "failed")
        self.assertEqual(report.steps[-1].output["errorType"], "handoff_unavailable")

    def test_invalid_definition_is_a_failed_report(self):
        _, channels = create_simulator()
        report = asyncio.run(run_workflow({"nodes": [], "edges": []}, channels))
        self.assertEqual(report.status, "failed")
        self.assertEqual(report.steps, [])
        self.assertIn("trigger", report.error.message)

    def test_unknown_start_node(self):
        _, channels = create_simulator()
        report = asyncio.run(run_workflow(follow_up_definition(), channels, start_node_id="nope"))
        self.assertEqual(report.status, "failed")
        self.assertIn("Start node not found", report.error.message)

    def test_markdown_report(self):
        _, channels = create_simulator()
        report = asyncio.run(
            run_workflow(follow_up_definition(), channels, lead=Lead(phone="+1"), now=MONDAY_MORNING)
        )
        markdown = report.to_markdown("Follow up")
        self.assertIn("# Execution Report: Follow up", markdown)
        self.assertIn("| 2 | `sms` | send-sms | OK |", markdown)
        self.assertIn("PAUSE", markdown)


class FailureInjectionTests(unittest.TestCase):
    def _preview(self, channels):
        return asyncio.run(
            run_workflow(
                follow_up_definition(),
                channels,
                lead=Lead(name="Ada", phone="+1", email="ada@example.com"),
                pause_at_wait=False,
                ignore_send_window=True,
            )
        )

    def test_transient_rate_limit_clears_after_times(self):
        failures = FailureConfig(rules={"send_email": FailureRule(error_type="rate_limit", times=1)})
        outbox, channels = create_simulator(failures)

        first = self._preview(channels)
        self.assertEqual(first.status, "failed")
        self.assertEqual(first.error.node_id, "email")
        self.assertEqual(first.steps[-1].output["errorType"], "rate_limit")
        self.assertIn("rate limit", first.error.message)

        second = self._preview(channels)
        self.assertEqual(second.status, "success")
        self.assertEqual(failures.failures("send_email"), 1)
        self.assertEqual(len(outbox.for_channel("email")), 1)
        self.assertEqual(len(outbox.for_channel("sms")), 2)

    def test_missing_recipient_rule_raises_recipient_error(self):
        failures = FailureConfig(rules={"send_sms": {"error_type": "missing_recipient"}})
        with self.assertRaises(RecipientError) as ctx:
            failures.check("send_sms")
        self.assertEqual(ctx.exception.error_type, "missing_recipient")
        failures.check("send_email")

    def test_seeded_probability_is_repeatable(self):
        def outcomes(config: FailureConfig) -> list[bool]:
            results = []
            for _ in range(20):
                try:
                    config.check("handoff_to_agent")
                    results.append(True)
                except ServiceError:
                    results.append(False)
            return results

        rule = {"handoff_to_agent": FailureRule(probability=0.5)}
        first = outcomes(FailureConfig(rules=rule, seed=7))
        self.assertEqual(first, outcomes(FailureConfig(rules=rule, seed=7)))
        self.assertIn(True, first)
        self.assertIn(False, first)
        self.assertNotIn(False, outcomes(FailureConfig(rules={"handoff_to_agent": FailureRule(probability=0.0)})))

    def test_rules_are_keyed_by_delivery_action(self):
        with self.assertRaises(ValidationError):
            FailureConfig(rules={"sms.send_sms": FailureRule()})
        with self.assertRaises(ValidationError):
            FailureRule(error_type="bounced")


if __name__ == "__main__":
    unittest.main()
