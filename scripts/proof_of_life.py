"""Proof of Life: standalone demo of the frame bus.

Run with: python scripts/proof_of_life.py

Builds one top-level context with two nested children in a single process:
the top context and the first child share an origin (and therefore the
shared fallback store); the second child lives on a trusted sibling domain.
"""

import asyncio
import sys

from framebus import (
    Action,
    BusConfig,
    DirectTransport,
    Envelope,
    MemoryStore,
    MessageBus,
    SharedStoreTransport,
    encode_envelope,
)


# Handle unhandled errors
def _unhandled_exception(loop, context):
    msg = context.get("exception", context["message"])
    print(f"Unhandled error: {msg}", file=sys.stderr)
    sys.exit(1)


TRUSTED = ["*.example.com", "*.example.org"]


def _make_bus(origin: str, peer_id: str, store: MemoryStore | None) -> tuple[MessageBus, DirectTransport]:
    config = BusConfig(origin=origin, peer_id=peer_id, trusted_domains=TRUSTED)
    direct = DirectTransport(origin)
    fallback = SharedStoreTransport(store, origin) if store is not None else None
    return MessageBus(config, direct, fallback), direct


async def main() -> None:
    print("=" * 60)
    print("  FRAME BUS - Proof of Life")
    print("=" * 60)
    print()

    # Contexts
    print("[1/6] Building contexts...", end=" ")
    shared = MemoryStore()
    top, top_link = _make_bus("https://app.example.com", "app", shared)
    child, child_link = _make_bus("https://app.example.com", "app-frame", shared)
    quiz, quiz_link = _make_bus("https://quiz.example.org", "quiz", None)
    top_link.attach(child_link)
    top_link.attach(quiz_link)
    for bus in (top, child, quiz):
        await bus.start()
    print("OK (app -> [app-frame, quiz])")

    received: dict[str, list[Envelope]] = {"app-frame": [], "quiz": []}
    child.on_receive(lambda env: received["app-frame"].append(env))
    quiz.on_receive(lambda env: received["quiz"].append(env))

    # Discovery
    print("[2/6] Discovery ping from app...", end=" ")
    reply = await top.request({"discoveryPing": True}, timeout=1.0)
    print(f"first pong from {reply.from_peer if reply else 'nobody'}")

    # Status broadcast over both channels
    print("[3/6] Broadcasting updateStatus(enabled=True)...")
    top.send(Action.UPDATE_STATUS, {"enabled": True})
    await asyncio.sleep(0.1)
    for peer, envs in received.items():
        count = sum(1 for e in envs if e.action == Action.UPDATE_STATUS)
        print(f"       {peer}: delivered {count} time(s)")

    # Throttling
    print("[4/6] Re-sending updateStatus immediately...", end=" ")
    again = top.send(Action.UPDATE_STATUS, {"enabled": False})
    print("throttled" if again is None else f"sent {again}")

    # Loop protection
    print("[5/6] Injecting a looping envelope into quiz...", end=" ")
    looping = Envelope(
        action=Action.ANALYZE_QUESTION,
        from_peer="app",
        path=("app", "quiz", "app", "quiz", "app"),
    )
    delivered = quiz.receive(encode_envelope(looping), "https://app.example.com")
    print("blocked" if delivered is None else "delivered (unexpected)")

    # Report
    print("[6/6] Diagnostics report from app:")
    report = top.get_report()
    print(f"       summary: {report.summary}")
    print(f"       flow rating: {report.flow_rating}")
    quiz_report = quiz.get_report()
    print(f"       quiz loops: {quiz_report.loops}, rating: {quiz_report.flow_rating}")

    for bus in (top, child, quiz):
        await bus.close()

    print()
    print("=" * 60)
    print("  SUCCESS! The bus is alive.")
    print("=" * 60)


if __name__ == "__main__":
    loop = asyncio.new_event_loop()
    loop.set_exception_handler(_unhandled_exception)
    loop.run_until_complete(main())
