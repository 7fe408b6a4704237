from app.client.poller import CVProcessingClient, PollOutcome, PollResult

__all__ = ["CVProcessingClient", "PollOutcome", "PollResult"]
