"""In-memory delivery channels for running workflows without external calls."""

from ..workflow.channels import DeliveryChannels
from .failures import FailureConfig
from .services import SimulatedAgentService, SimulatedEmailService, SimulatedSmsService
from .state import Outbox


def create_simulator(
    failure_config: FailureConfig | None = None,
) -> tuple[Outbox, DeliveryChannels]:
    """Create a fresh outbox and the delivery callbacks that write to it."""
    outbox = Outbox()
    sms = SimulatedSmsService(outbox, failure_config)
    email = SimulatedEmailService(outbox, failure_config)
    agent = SimulatedAgentService(outbox, failure_config)

    channels = DeliveryChannels(
        send_email=email.send_email,
        send_sms=sms.send_sms,
        handoff_to_agent=agent.handoff_to_agent,
    )
    return outbox, channels
