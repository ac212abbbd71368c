"""Starlette adapter for response snapshots.

Converts between ``ResponseSnapshot`` and Starlette responses so a handler
can return a replayed snapshot exactly as it was first sent: same status,
same header order, same header and body bytes.

Examples:
    A publish endpoint::

        from starlette.requests import Request
        from starlette.responses import Response

        from newsletter_outbox.adapters.starlette import snapshot_to_response

        async def publish_newsletter(request: Request) -> Response:
            form = await request.form()
            outcome = await publisher.publish(
                actor_id=request.user.user_id,
                raw_key=form["idempotency_key"],
                payload=NewsletterPayload(
                    title=form["title"],
                    html=form["html_content"],
                    text=form["text_content"],
                ),
            )
            return snapshot_to_response(outcome.response)
"""

from starlette.responses import Response, StreamingResponse

from newsletter_outbox.models import ResponseSnapshot


def snapshot_to_response(snapshot: ResponseSnapshot) -> Response:
    """Convert a snapshot to a Starlette response.

    The snapshot's headers are emitted in order and byte for byte. A
    ``content-length`` header is appended only if the snapshot has none.

    Args:
        snapshot: Saved or freshly built response snapshot

    Returns:
        Starlette Response object
    """
    response = Response(content=snapshot.body, status_code=snapshot.status_code)

    raw_headers = [
        (name.lower().encode("latin-1"), value) for name, value in snapshot.headers
    ]
    if not any(name == b"content-length" for name, _ in raw_headers):
        raw_headers.append((b"content-length", str(len(snapshot.body)).encode("latin-1")))

    response.raw_headers = raw_headers
    return response


def response_to_snapshot(response: Response) -> ResponseSnapshot:
    """Capture a fully-buffered Starlette response as a snapshot.

    Args:
        response: Response whose body is already in memory

    Returns:
        ResponseSnapshot with the response's raw headers in order

    Raises:
        TypeError: If the response is streamed
    """
    if isinstance(response, StreamingResponse):
        raise TypeError("Streaming responses cannot be captured as snapshots")

    body = response.body
    return ResponseSnapshot(
        status_code=response.status_code,
        headers=[(name.decode("latin-1"), bytes(value)) for name, value in response.raw_headers],
        body=bytes(body),
    )
