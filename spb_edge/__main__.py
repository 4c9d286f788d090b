"""Run a Sparkplug B edge node with one simulated temperature sensor.

Configuration comes from SPB_* environment variables (see config.Settings).
"""

import argparse
import logging
import random
import threading

import uvicorn

from .api import create_app
from .config import Settings
from .controller import SessionController
from .device import SimpleDevice
from .errors import ConnectAborted, SparkplugError
from .lifecycle import LifecycleState
from .metrics import Float, Int32

logger = logging.getLogger("spb_edge")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="spb-edge", description=__doc__)
    parser.add_argument("--device-id", default="tempSensor01")
    parser.add_argument("--interval", type=float, default=5.0, help="seconds between DDATA messages")
    parser.add_argument("--count", type=int, default=None, help="stop after this many DDATA messages")
    return parser


def serve_api(controller: SessionController, settings: Settings) -> threading.Thread:
    config = uvicorn.Config(
        create_app(controller),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
    thread = threading.Thread(target=uvicorn.Server(config).run, name="status-api", daemon=True)
    thread.start()
    return thread


def read_sensor(device: SimpleDevice) -> None:
    # Simulate sensor readings
    device.update({
        "temperatur": Int32(random.randint(20, 30)),
        "humidity": Float(round(random.uniform(40.0, 80.0), 1)),
    })


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    controller = SessionController.from_settings(settings)
    device = SimpleDevice(args.device_id, {"temperatur": Int32(25), "humidity": Float(65.5)})
    stop = threading.Event()

    if settings.api_enabled:
        serve_api(controller, settings)

    sent = 0
    print("🚀 Starting Edge Node...")
    try:
        while not stop.is_set():
            if controller.state is LifecycleState.OFFLINE:
                try:
                    controller.start(cancel=stop)
                    controller.attach_device(device)
                except ConnectAborted:
                    raise
                except SparkplugError as e:
                    logger.warning("Session start failed: %s", e)
                    stop.wait(settings.connect_retry_interval)
                    continue

            read_sensor(device)
            try:
                controller.publish_device_data(device.device_id, device.metric_values())
                sent += 1
            except SparkplugError as e:
                logger.warning("DDATA not sent: %s", e)

            if args.count is not None and sent >= args.count:
                print("✅ Data transmission complete")
                break
            stop.wait(args.interval)
    except KeyboardInterrupt:
        print("\n⏹️  Stopping edge node...")
    except ConnectAborted as e:
        logger.error("%s", e)
        return 1
    finally:
        stop.set()
        controller.stop()
        print("🔌 Edge node disconnected")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
