"""Command-line interface for the shop-floor digital twin."""

import json
import logging
import signal
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional

import click

from . import __version__
from .channel import LiveChannel
from .config import Config
from .interlock import InterlockGate, StartRequest
from .mqtt_client import MQTTClient
from .rng import DeterministicRandom
from .scheduler import DEFAULT_BREAKDOWN_MACHINE, DEFAULT_EXPIRED_TOOL, DigitalTwinScheduler
from .store import Store

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path("config/config.yaml")


def _load_config(config_path: Path, seed: Optional[int] = None) -> Config:
    config = Config.from_env(Config.from_yaml(config_path))
    if seed is not None:
        config.simulation.random_seed = seed
    return config


@click.group()
@click.version_option(version=__version__)
def main():
    """Shop-floor digital twin with zero-error production interlocks.

    Advances machine health and status on a fixed tick, predicts failure
    risk, raises NCRs on faults and publishes machine snapshots over MQTT.
    Production starts are gated by FAI approval, tool life, operator
    competency and BOM stock.
    """
    pass


@main.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default=DEFAULT_CONFIG,
    help="Path to config.yaml",
)
@click.option("--broker", "-b", default=None, help="MQTT broker address")
@click.option("--port", "-p", type=int, default=None, help="MQTT broker port")
@click.option("--seed", type=int, default=None, help="Random seed override")
@click.option("--dry-run", is_flag=True, default=False, help="Do not connect to a broker")
def run(config_path, broker, port, seed, dry_run):
    """Run the twin until interrupted."""
    config = _load_config(config_path, seed)
    if broker:
        config.mqtt.broker = broker
    if port:
        config.mqtt.port = port

    store = Store.from_plant(config.plant)
    channel = LiveChannel()
    scheduler = DigitalTwinScheduler(
        config, store, rng=DeterministicRandom(config.simulation.random_seed), channel=channel
    )
    mqtt_client = MQTTClient(config.mqtt, config.uns, on_command=scheduler.handle_command)
    channel.add_sink(mqtt_client.publish_machine_update)

    def signal_handler(sig, frame):
        logger.info("Shutting down...")
        scheduler.stop()
        mqtt_client.disconnect()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if not mqtt_client.connect(dry_run=dry_run):
        click.echo("Failed to connect to MQTT broker", err=True)
        sys.exit(1)

    scheduler.start()
    click.echo(f"Tick:  {config.simulation.tick_interval_ms}ms, seed {config.simulation.random_seed}")
    click.echo(f"MQTT:  {config.mqtt.broker}:{config.mqtt.port}{' (dry run)' if dry_run else ''}")
    click.echo(f"Topic: {mqtt_client.base_topic}/{MQTTClient.MACHINES_TOPIC}")
    click.echo("Press Ctrl+C to stop")

    while scheduler.running:
        time.sleep(1)


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=Path("config"),
    help="Output directory for config files",
)
def init(output):
    """Generate a sample configuration file with the reference plant."""
    output.mkdir(parents=True, exist_ok=True)

    cfg = Config.default()
    config_path = output / "config.yaml"
    cfg.to_yaml(config_path)

    click.echo(f"Created: {config_path}")
    click.echo(f"Run with: shopfloor-twin run --config {config_path}")


@main.command()
@click.option("--ticks", "-n", type=click.IntRange(1), default=10, help="Number of ticks")
@click.option("--seed", type=int, default=None, help="Random seed override")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default=DEFAULT_CONFIG,
    help="Path to config.yaml",
)
def simulate(ticks, seed, config_path):
    """Run ticks offline and print the resulting machine table."""
    config = _load_config(config_path, seed)
    store = Store.from_plant(config.plant)
    scheduler = DigitalTwinScheduler(config, store)

    for _ in range(ticks):
        scheduler.tick()

    click.echo(f"After {ticks} ticks (seed {config.simulation.random_seed}):")
    click.echo(f"{'MACHINE':<14}{'STATUS':<13}{'HEALTH':>8}{'OEE':>8}{'RUL h':>9}{'PoF %':>8}")
    for m in store.list_machines():
        click.echo(
            f"{m.id:<14}{m.status.value:<13}{m.health_score:>8.1f}{m.oee:>8.1f}"
            f"{m.predicted_rul:>9.1f}{m.failure_probability:>8.1f}"
        )
    for record in store.list_quality_records():
        click.echo(f"{record.id} [{record.severity.value}] {record.title}: {record.description}")


@main.command()
@click.argument("work_order_id")
@click.option("--operator", "-u", "operator_id", required=True, help="Operator id")
@click.option("--machine", "-m", "machine_id", default=None, help="Target machine id")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default=DEFAULT_CONFIG,
    help="Path to config.yaml",
)
def start(work_order_id, operator_id, machine_id, config_path):
    """Check a production start against the interlocks of the seeded plant."""
    config = _load_config(config_path)
    store = Store.from_plant(config.plant)
    gate = InterlockGate(store, config=config.interlock)

    result = gate.start_production(
        StartRequest(work_order_id=work_order_id, operator_id=operator_id, machine_id=machine_id)
    )
    click.echo(json.dumps(result.to_dict(), indent=2))
    if not result.accepted:
        sys.exit(2)


def _send_command(broker: str, port: int, command: str, payload: Dict[str, Any]) -> None:
    """Publish a control command to a running twin."""
    import paho.mqtt.client as mqtt

    topic = f"{MQTTClient.CONTROL_ROOT}/control/{command}"
    client = mqtt.Client(callback_api_version=mqtt.CallbackAPIVersion.VERSION2)

    try:
        client.connect(broker, port)
        result = client.publish(topic, json.dumps(payload), qos=1)
        result.wait_for_publish()
        client.disconnect()

        click.echo(f"Sent {command}")
        click.echo(f"  Topic:   {topic}")
        click.echo(f"  Payload: {json.dumps(payload)}")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command()
@click.option("--broker", "-b", default="localhost", help="MQTT broker address")
@click.option("--port", "-p", type=int, default=1883, help="MQTT broker port")
@click.argument("machine_id", default=DEFAULT_BREAKDOWN_MACHINE)
def force_breakdown(broker, port, machine_id):
    """Force a machine of a running twin into Error."""
    _send_command(broker, port, "force-breakdown", {"machine_id": machine_id})


@main.command()
@click.option("--broker", "-b", default="localhost", help="MQTT broker address")
@click.option("--port", "-p", type=int, default=1883, help="MQTT broker port")
@click.argument("tool_id", default=DEFAULT_EXPIRED_TOOL)
def expire_tool(broker, port, tool_id):
    """Set a tool's remaining life to 0%."""
    _send_command(broker, port, "expire-tool", {"tool_id": tool_id})


@main.command()
@click.option("--broker", "-b", default="localhost", help="MQTT broker address")
@click.option("--port", "-p", type=int, default=1883, help="MQTT broker port")
@click.option("--count", "-n", type=click.IntRange(1), default=5, help="Number of NCRs")
def inject_ncr(broker, port, count):
    """Inject a batch of synthetic NCRs."""
    _send_command(broker, port, "inject-ncr", {"count": count})


@main.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default=DEFAULT_CONFIG,
    help="Path to config.yaml",
)
@click.option("--broker", "-b", default=None, help="MQTT broker address")
@click.option("--port", "-p", type=int, default=None, help="MQTT broker port")
@click.option("--prefix", default=None, help="Topic prefix (default from config)")
@click.option("--enterprise", default=None, help="Enterprise name in topic")
@click.option("--site", default=None, help="Site name in topic")
def subscribe(config_path, broker, port, prefix, enterprise, site):
    """Print live machine snapshots published by a running twin."""
    import paho.mqtt.client as mqtt

    config = _load_config(config_path)
    if prefix:
        config.uns.topic_prefix = prefix
    if enterprise:
        config.uns.enterprise = enterprise
    if site:
        config.uns.site = site
    broker = broker or config.mqtt.broker
    port = port or config.mqtt.port

    full_topic = f"{MQTTClient(config.mqtt, config.uns).base_topic}/{MQTTClient.MACHINES_TOPIC}"

    def on_message(client, userdata, msg):
        try:
            payload = json.loads(msg.payload.decode())
            for m in payload.get("machines", []):
                click.echo(
                    f"{m['id']:<14}{m['status']:<13}health={m['health_score']:<7} "
                    f"pof={m['failure_probability']}"
                )
            click.echo("-" * 40)
        except Exception:
            click.echo(f"{msg.topic}: {msg.payload.decode()}")

    def on_connect(client, userdata, flags, rc, properties=None):
        if rc == 0:
            client.subscribe(full_topic)
            click.echo(f"Subscribed to: {full_topic}")
            click.echo("Press Ctrl+C to stop")
            click.echo("-" * 40)

    client = mqtt.Client(callback_api_version=mqtt.CallbackAPIVersion.VERSION2)
    client.on_connect = on_connect
    client.on_message = on_message

    try:
        client.connect(broker, port)
        client.loop_forever()
    except KeyboardInterrupt:
        click.echo("\nDisconnected")
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
