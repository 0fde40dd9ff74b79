from .config import load_config, load_settings, save_config
from .logs import log
from .supervisor import Supervisor, install_runtime_signal_handlers, run_with_supervisor


def serve():
    install_runtime_signal_handlers()

    config = load_config()
    settings, changed = load_settings(config)
    if changed:
        save_config(config)

    supervisor = Supervisor(settings)
    try:
        supervisor.start()
        log("[INFO] Press Ctrl+C to stop")
        supervisor.wait()
    except KeyboardInterrupt:
        log("[INFO] Shutdown requested")
    finally:
        supervisor.stop()
    return 0


def main():
    raise SystemExit(run_with_supervisor(serve) or 0)


if __name__ == "__main__":
    main()
