import argparse
import logging
import sys

from aranet_device import open_device
from errors import AranetError
from export import write_csv
from logging_config import configure_logging
from settings import get_settings

logger = logging.getLogger("aranet4")


def run(args) -> int:
    """Read the current sample and optionally dump the stored history."""
    settings = get_settings()
    try:
        device = open_device(args.addr, timeout=settings.connect_timeout, fetch_timeout=settings.fetch_timeout)
    except AranetError as e:
        logger.error("could not create aranet4 client: %s", e)
        return 1

    with device:
        try:
            if args.verbose:
                try:
                    logger.info("name: %r", device.name())
                except AranetError as e:
                    logger.warning("could not get device name: %s", e)
                logger.info("vers: %r", device.version())

            print(device.read(), end="")

            if args.ts:
                samples = device.read_all()
                if args.output in ("", "-"):
                    write_csv(samples, sys.stdout)
                else:
                    with open(args.output, "w", encoding="utf-8") as f:
                        write_csv(samples, f)
        except AranetError as e:
            logger.error("could not read data: %s", e)
            return 1
        except OSError as e:
            logger.error("could not write output file: %s", e)
            return 1

    return 0


def main(argv=None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Read samples from an Aranet4 CO2 monitor.")
    parser.add_argument("--addr", default=settings.device_address, help="MAC address of the Aranet4")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable verbose mode")
    parser.add_argument("--ts", action="store_true", help="fetch time series")
    parser.add_argument("-o", "--output", default="", help="path to output file for time series")
    args = parser.parse_args(argv)

    configure_logging("DEBUG" if args.verbose else None)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
