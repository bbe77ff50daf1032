"""Session state publisher for pub/sub fan-out to UI surfaces."""

import logging
from pubsub import pub

from ..models.session import SessionRuntimeState

logger = logging.getLogger(__name__)

SESSION_STATE_TOPIC = "session.state"


class SessionStatePublisher:
    """Publishes engine state using pubsub.pub. Subscribe it to a SessionEngine."""

    def __init__(self, topic: str = SESSION_STATE_TOPIC):
        """Initialize session state publisher.

        Args:
            topic: Pub/sub topic name for session state updates
        """
        self.topic = topic
        self.published = 0
        logger.info(f"SessionStatePublisher initialized with topic: {topic}")

    def publish_state(self, state: SessionRuntimeState) -> None:
        """Publish a state snapshot to the pub/sub topic.

        Args:
            state: New engine state
        """
        pub.sendMessage(self.topic, state=state)
        self.published += 1
        logger.debug(f"Published session state: {state.phase.value} {state.elapsed_seconds}s")
