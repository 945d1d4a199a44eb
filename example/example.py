"""
Simple example demonstrating the Pipeliner library.
Shows submitting operations, retries of a flaky backend, batching and
persisting the backlog to a directory.

The backend is simulated with httpx.MockTransport, so no server is needed.
Replace the transport with ``HTTPTransport()`` and the endpoint with your
admin-ajax URL to talk to a real backend.

Prerequisites:
1. Install the pipeliner package: pip install pipeliner

Usage:
    python example.py
"""

import asyncio
import logging
import tempfile
from urllib.parse import parse_qsl

import httpx

# Import the pipeliner and related components
from pipeliner import (
    BatchRequest,
    FileSnapshotStore,
    HTTPTransport,
    Notification,
    PipelineConfig,
    Pipeliner,
    PipelineError,
    RetryConfig,
)


class FlakyBackend:
    """Answers every third request of an action with HTTP 503."""

    def __init__(self):
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        fields = dict(parse_qsl(request.content.decode("utf-8")))
        if self.calls % 3 == 0:
            return httpx.Response(503, text="Service Unavailable")
        if fields["action"] == "las_reset_settings":
            return httpx.Response(
                200, json={"success": False, "data": {"message": "Not allowed"}}
            )
        return httpx.Response(
            200, json={"success": True, "data": {"action": fields["action"]}}
        )


class PipelinerExample:
    """Example demonstrating basic Pipeliner usage."""

    def __init__(self, snapshot_dir: str):
        """Initialize the example with a simulated backend."""
        self.backend = FlakyBackend()
        self.config = PipelineConfig(
            endpoint="https://example.test/wp-admin/admin-ajax.php",
            nonce="example-nonce",
            retry=RetryConfig(base_delay=0.2, max_delay=2.0),
        )
        self.store = FileSnapshotStore(snapshot_dir)

    async def run_example(self):
        """Run the main example demonstration."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.backend))
        p = Pipeliner(self.config, transport=HTTPTransport(client=client), store=self.store)
        p.on_notification(self.on_notification)

        async with p:
            result = await p.submit("load_settings", {"tab": "general"})
            logging.info(f"load_settings returned {result}")

            # save_settings is batchable and coalesced with other saves
            saves = [
                p.dispatch("save_settings", {"settings": {"color": color}})
                for color in ("red", "green", "blue")
            ]
            logging.info(f"Save results: {await asyncio.gather(*saves)}")

            batch = await p.submit_batch(
                [BatchRequest("export_settings"), BatchRequest("get_preview_css")]
            )
            logging.info(f"Batch results: {batch.to_dict()}")

            try:
                await p.submit("reset_settings")
            except PipelineError as e:
                logging.error(f"reset_settings failed: {e}")

            metrics = p.get_metrics()
            logging.info(
                f"Requests: {metrics['total_requests']}, "
                f"success rate: {metrics['success_rate']:.1f}%, "
                f"retried: {metrics['retried_requests']}"
            )

        await client.aclose()
        logging.info("Exiting...")

    @staticmethod
    def on_notification(notification: Notification) -> None:
        logging.info(f"[{notification.type}] {notification.action}: {notification.message}")


async def main():
    """Main function."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    with tempfile.TemporaryDirectory() as snapshot_dir:
        example = PipelinerExample(snapshot_dir)
        try:
            await example.run_example()
        except Exception as e:
            logging.error(f"Error in example: {e}")


if __name__ == "__main__":
    asyncio.run(main())
