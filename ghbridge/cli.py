import argparse
import asyncio
import json
import signal
import sys

from ghbridge.config.settings import settings
from ghbridge.core.logging import setup_logging


def _run_worker(handler_spec: str | None, once: bool) -> int:
    from ghbridge.core.db import get_store
    from ghbridge.worker.runner import Worker, load_handler, log_cherry_pick

    handler = load_handler(handler_spec) if handler_spec else log_cherry_pick

    async def _main() -> int:
        store = get_store()
        worker = Worker(store, handler)
        try:
            if once:
                res = await worker.run_once()
                print(res.outcome.value)
                return 0
            stop = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, stop.set)
                except NotImplementedError:
                    # Windows: Ctrl+C llega como KeyboardInterrupt
                    pass
            await worker.run(stop)
            return 0
        finally:
            await store.close()

    return asyncio.run(_main())


def _list_jobs(status: str | None, limit: int) -> int:
    from ghbridge.core.db import get_store

    async def _main() -> int:
        store = get_store()
        try:
            for job in await store.list_jobs(status=status, limit=limit):
                print(json.dumps(job.model_dump(mode="json"), ensure_ascii=False))
            print(json.dumps(await store.counts()), file=sys.stderr)
        finally:
            await store.close()
        return 0

    return asyncio.run(_main())


def _init_db() -> int:
    from ghbridge.core.db import get_store

    async def _main() -> int:
        store = get_store()
        await store.open()
        await store.close()
        print(f"[i] DB lista en {settings.DB_PATH}")
        return 0

    return asyncio.run(_main())


def _ask(prompt: str, url: str | None) -> int:
    import requests

    resp = requests.post(
        url or settings.AGENT_URL,
        headers={"Content-Type": "application/json"},
        data=json.dumps({"prompt": prompt}),
        timeout=settings.GEMINI_TIMEOUT + settings.MCP_TIMEOUT,
    )
    try:
        body = resp.json()
    except ValueError:
        body = {"raw": resp.text}
    print(json.dumps(body, indent=2, ensure_ascii=False))
    return 0 if resp.ok else 1


def main(argv=None):
    parser = argparse.ArgumentParser("ghbridge")
    sub = parser.add_subparsers(dest="cmd")

    sub.add_parser("mcp", help="Inicia el servidor de herramientas (JSON-RPC sobre SSE)")
    sub.add_parser("agent", help="Inicia el endpoint del agente (/api/agent)")
    p_worker = sub.add_parser("worker", help="Procesa jobs de la cola")
    p_worker.add_argument("--handler", help="paquete.modulo:funcion que procesa cada job")
    p_worker.add_argument("--once", action="store_true", help="Intenta un solo claim y sale")
    sub.add_parser("init-db", help="Crea la base de datos de la cola")
    p_jobs = sub.add_parser("jobs", help="Lista jobs (JSON por línea)")
    p_jobs.add_argument("--status", choices=["queued", "running", "completed", "failed"])
    p_jobs.add_argument("--limit", type=int, default=50)
    p_ask = sub.add_parser("ask", help="Envía un prompt al agente")
    p_ask.add_argument("prompt")
    p_ask.add_argument("--url", help="URL del agente (por defecto AGENT_URL)")

    args = parser.parse_args(argv)
    setup_logging(settings.LOG_LEVEL, settings.LOG_DIR)

    if args.cmd in ("mcp", "agent"):
        try:
            import uvicorn

            if args.cmd == "mcp":
                target, host, port = "ghbridge.mcp.api:app", settings.MCP_HOST, settings.PORT
            else:
                target, host, port = "ghbridge.agent.api:app", settings.AGENT_HOST, settings.AGENT_PORT
            uvicorn.run(target, host=host, port=port, reload=False)
            return 0
        except KeyboardInterrupt:
            print("\n[i] Servidor detenido por el usuario.")
            return 0
        except Exception as e:
            print(f"[!] Error al iniciar el servidor: {e!r}")
            return 1

    elif args.cmd == "worker":
        try:
            return _run_worker(args.handler, args.once)
        except KeyboardInterrupt:
            print("\n[i] Worker detenido por el usuario.")
            return 0
        except Exception as e:
            print(f"[!] Error en el worker: {e!r}")
            return 1

    elif args.cmd == "init-db":
        try:
            return _init_db()
        except Exception as e:
            print(f"[!] No se pudo crear la DB: {e!r}")
            return 1

    elif args.cmd == "jobs":
        return _list_jobs(args.status, args.limit)

    elif args.cmd == "ask":
        try:
            return _ask(args.prompt, args.url)
        except Exception as e:
            print(f"[!] Error llamando al agente: {e!r}")
            return 1

    else:
        parser.print_help()
        # código 2 suele indicar 'uso incorrecto de CLI'
        return 2


if __name__ == "__main__":
    sys.exit(main())
