import asyncio
import json
import logging
import os
import queue
import threading
from typing import Callable, Dict, Optional, Tuple

from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request, stream_with_context

from interpreter import TarotInterpreter
from orchestrator import ReadingOrchestrator
from session import DEFAULT_READING_DELAY, DEFAULT_SHUFFLE_DELAY, TarotSession

logger = logging.getLogger(__name__)

KEEP_ALIVE_SECONDS = 15.0


class SessionRunner:
    """Runs the live session on its own event loop thread.

    Flask handlers never touch the session directly: every call is marshalled
    onto the loop, where the session's timers and reading tasks also run.
    """

    def __init__(self, session: TarotSession, *, timeout: float = 10.0) -> None:
        self.session = session
        self.timeout = timeout
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="tarot-session-loop", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def call(self, fn: Callable, *args, **kwargs):
        async def invoke():
            return fn(*args, **kwargs)

        future = asyncio.run_coroutine_threadsafe(invoke(), self.loop)
        return future.result(timeout=self.timeout)

    def apply(self, action: str, *args) -> Dict:
        """Run a session event and return the snapshot taken right after it."""

        def invoke() -> Dict:
            getattr(self.session, action)(*args)
            return self.session.snapshot()

        return self.call(invoke)

    def subscribe(self) -> Tuple["queue.Queue", Callable, Dict]:
        events: "queue.Queue" = queue.Queue()

        def listener(event: str, payload: Dict) -> None:
            events.put((event, payload))

        def invoke() -> Dict:
            self.session.subscribe(listener)
            return self.session.snapshot()

        return events, listener, self.call(invoke)

    def unsubscribe(self, listener: Callable) -> None:
        self.call(self.session.unsubscribe, listener)

    def stop(self) -> None:
        """Stop the loop thread, cancel unfinished tasks and close the loop."""
        if self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=self.timeout)
        if self._thread.is_alive():
            logger.warning("Session loop thread did not stop; leaving the loop open")
            return

        pending = asyncio.all_tasks(self.loop)
        for task in pending:
            task.cancel()
        if pending:
            self.loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        self.loop.close()


def build_runner() -> SessionRunner:
    # Gracefully handle a missing API key: readings fall back to a fixed message
    interpreter: Optional[TarotInterpreter] = None
    if os.getenv("OPENAI_API_KEY"):
        try:
            interpreter = TarotInterpreter()
        except Exception:
            logger.exception("Could not create the OpenAI interpreter")
            interpreter = None
    else:
        logger.warning("OPENAI_API_KEY is not set; readings will use the fallback text")

    session = TarotSession(
        ReadingOrchestrator(interpreter),
        shuffle_delay=float(os.getenv("TAROT_SHUFFLE_DELAY", DEFAULT_SHUFFLE_DELAY)),
        reading_delay=float(os.getenv("TAROT_READING_DELAY", DEFAULT_READING_DELAY)),
    )
    return SessionRunner(session)


def _sse_event(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


def _flag(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    return value not in ("0", "false", "False", "")


def create_app(runner: Optional[SessionRunner] = None) -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.json.ensure_ascii = False

    if runner is None:
        runner = build_runner()
    app.extensions["tarot_runner"] = runner

    @app.get("/session")
    def get_session():
        compact = _flag(request.args.get("compact"))
        return jsonify(runner.call(runner.session.snapshot, compact))

    @app.post("/session/question")
    def set_question():
        body = request.get_json(silent=True) or {}
        return jsonify(runner.apply("set_question", str(body.get("question", ""))))

    @app.post("/session/start")
    def start_session():
        body = request.get_json(silent=True) or {}
        question = body.get("question")
        if question is not None:
            question = str(question)
        return jsonify(runner.apply("start", question))

    @app.post("/session/select/<int:slot_id>")
    def select_slot(slot_id: int):
        return jsonify(runner.apply("select_slot", slot_id))

    @app.post("/session/reset")
    def reset_session():
        return jsonify(runner.apply("reset"))

    @app.post("/session/display")
    def set_display():
        body = request.get_json(silent=True) or {}
        return jsonify(runner.apply("set_compact", bool(body.get("compact", False))))

    @app.get("/stream")
    def stream_session():
        events, listener, initial = runner.subscribe()

        def event_stream():
            try:
                yield _sse_event("init", initial)
                while True:
                    try:
                        event, payload = events.get(timeout=KEEP_ALIVE_SECONDS)
                    except queue.Empty:
                        # Heartbeat to keep proxies from buffering too much
                        yield ":keep-alive\n\n"
                        continue
                    yield _sse_event(event, payload)
            finally:
                runner.unsubscribe(listener)

        headers = {
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
        }
        return Response(stream_with_context(event_stream()), headers=headers)

    return app


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("TAROT_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    port = int(os.getenv("PORT", "5000"))
    create_app().run(host="0.0.0.0", port=port, debug=True, use_reloader=False, threaded=True)
