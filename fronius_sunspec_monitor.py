#!/usr/bin/env python3
"""
Fronius SunSpec Monitor - Modbus TCP/RTU to MQTT Bridge

Validates Fronius inverters and smart meters against their SunSpec register
maps, polls them and publishes decoded values to MQTT.

Features:
- Float and integer+scale-factor model detection
- MPPT, storage and immediate controls extensions
- Event flag and operating state parsing
- Publish-on-change or publish-all modes
- Per-device reconnect backoff
"""

import sys
import time
import signal
import json
import argparse
from pathlib import Path

from fronius_sunspec import (
    __version__,
    setup_logging,
    get_config,
    create_devices,
    DevicePoller,
    MQTTPublisher,
)


class FroniusSunSpecMonitor:
    """Main application class"""

    def __init__(self, config_path: str = None, device_filter: str = 'all'):
        """
        Initialize application.

        Args:
            config_path: Optional path to configuration file
            device_filter: 'all', 'inverter', or 'meter' - which devices to poll
        """
        self.running = False
        self.device_filter = device_filter
        self.config = get_config(config_path)

        # Use a device-specific log file if filter is set
        log_file = self.config.general.log_file
        if log_file and device_filter != 'all':
            log_path = Path(log_file)
            log_file = str(log_path.parent / f"{device_filter}.log")

        # Setup logging
        self.log = setup_logging(
            log_level=self.config.general.log_level,
            log_file=log_file
        )

        kinds = ('inverter', 'meter') if device_filter == 'all' else (device_filter,)
        self.devices = create_devices(self.config.modbus, self.config.devices, kinds)
        self.poller: DevicePoller = None
        self.mqtt_publisher: MQTTPublisher = None

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals"""
        self.log.info("Shutdown signal received")
        self.running = False

    def _publish_data(self, device_id: int, device_type: str, data: dict):
        """Callback for the polling thread to publish data"""
        if self.mqtt_publisher:
            self.mqtt_publisher.publish_device_data(device_type, device_id, data)

    def _init_mqtt(self) -> bool:
        """Initialize MQTT publisher"""
        if not self.config.mqtt.enabled:
            self.log.info("MQTT publishing disabled")
            return True

        self.mqtt_publisher = MQTTPublisher(
            self.config.mqtt,
            self.config.general.publish_mode
        )

        if not self.mqtt_publisher.connect():
            self.log.warning("Failed to connect to MQTT broker")
            return False

        # Publish online status
        self.mqtt_publisher.publish_status("online")
        return True

    def _create_poller(self) -> DevicePoller:
        return DevicePoller(
            self.devices,
            self.config.general.poll_interval,
            publish_callback=self._publish_data,
            read_storage=self.config.devices.read_storage,
            read_controls=self.config.devices.read_controls
        )

    def run_once(self) -> int:
        """Validate and poll every device once, print the snapshots as JSON."""
        poller = self._create_poller()
        snapshots = poller.poll_once()
        for polled in self.devices:
            polled.device.disconnect()

        print(json.dumps(snapshots, indent=2, default=str))
        failed = len(self.devices) - len(snapshots)
        if failed:
            self.log.error(f"{failed} of {len(self.devices)} device(s) could not be read")
            return 1
        return 0

    def start(self):
        """Start the application"""
        self.log.info("=" * 60)
        self.log.info(f"Fronius SunSpec Monitor v{__version__}")
        self.log.info("=" * 60)

        if not self.devices:
            self.log.error("No devices configured, exiting")
            sys.exit(1)

        # Log device configuration
        modbus = self.config.modbus
        transport = f"{modbus.host}:{modbus.port}" if modbus.use_tcp else f"{modbus.device}@{modbus.baud}"
        self.log.info(f"Modbus: {transport}")
        self.log.info(f"Configured inverters: {self.config.devices.inverters}")
        self.log.info(f"Configured meters: {self.config.devices.meters}")
        self.log.info(f"Poll interval: {self.config.general.poll_interval}s")

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        # Initialize publisher before the poller so the callback can use it
        self._init_mqtt()

        self.poller = self._create_poller()
        self.poller.start()

        self.running = True
        self._main_loop()

    def _main_loop(self):
        """Main loop - just keeps the app running while the poller runs"""
        self.log.info(f"Polling thread started (mode: {self.config.general.publish_mode})")
        self.log.info("Press Ctrl+C to stop")

        while self.running:
            try:
                time.sleep(1)
            except KeyboardInterrupt:
                break

        self._shutdown()

    def _shutdown(self):
        """Clean shutdown"""
        self.log.info("Shutting down...")

        if self.poller:
            self.poller.stop()
            self.poller.join(timeout=10)

        # Publish offline status
        if self.mqtt_publisher and self.mqtt_publisher.connected:
            self.mqtt_publisher.publish_status("offline")
            time.sleep(0.5)  # Allow message to be sent

        if self.mqtt_publisher:
            self.mqtt_publisher.disconnect()

        # Log stats
        if self.poller:
            stats = self.poller.get_stats()
            self.log.info(
                f"Poll stats: {stats['successful_polls']} polls, "
                f"{stats['failed_polls']} failures"
            )
            reads = sum(p.device.transport.successful_reads for p in self.devices)
            failures = sum(p.device.transport.failed_reads for p in self.devices)
            self.log.info(f"Modbus stats: {reads} reads, {failures} failures")

        if self.mqtt_publisher:
            stats = self.mqtt_publisher.get_stats()
            self.log.info(
                f"MQTT stats: {stats['messages_published']} published, "
                f"{stats['messages_skipped']} skipped"
            )

        self.log.info("Shutdown complete")


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Fronius SunSpec Monitor - Read Fronius inverters and meters via Modbus"
    )
    parser.add_argument(
        '-c', '--config',
        help='Path to configuration file',
        default=None
    )
    parser.add_argument(
        '-v', '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    parser.add_argument(
        '-d', '--device',
        choices=['all', 'inverter', 'meter'],
        default='all',
        help='Device type to poll: all (default), inverter, or meter'
    )
    parser.add_argument(
        '--once',
        action='store_true',
        help='Validate and poll every device once, print JSON and exit'
    )
    args = parser.parse_args()

    try:
        app = FroniusSunSpecMonitor(args.config, device_filter=args.device)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(2)

    if args.once:
        sys.exit(app.run_once())
    app.start()


if __name__ == "__main__":
    main()
