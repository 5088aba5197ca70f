"""Entry point for nexttrain."""

import logging
import sys

from nexttrain.config import load_config


def run_fetch_test(config):
    """Run one refresh cycle and print the resulting board."""
    from nexttrain.app import BoardApp, render_board

    app = BoardApp(config)
    app.refresh()
    print(render_board(app.session, config))
    return 0 if app.session.fetch_ok else 1


def run_search(config):
    """Search for station CRS codes by name."""
    from nexttrain.api import HuxleyClient

    client = HuxleyClient(config)
    results = client.search_stations(config.search)
    if not results:
        print("No stations found.")
        return
    for i, loc in enumerate(results, 1):
        name = loc.get("stationName", "Unknown")
        crs = loc.get("crsCode", "?")
        print(f"  {i}. {name}  [CRS: {crs}]")


def run_app(config):
    """Run the live board until interrupted."""
    from nexttrain.app import BoardApp

    app = BoardApp(config)
    app.run()


def main():
    """CLI entry point for nexttrain.

    Loads configuration (defaults -> YAML -> CLI args), sets up logging
    to stderr, then dispatches on CLI flags:
      --fetch-test:  print one board to stdout and exit
      --search:      look up station CRS codes by name and exit
      (default):     run the live, self-refreshing board
    """
    config = load_config()

    # Log to stderr so stdout is clean for the board and --search output.
    level = logging.DEBUG if config.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    logger = logging.getLogger(__name__)
    logger.debug(
        "Config loaded: %s <-> %s, strategy=%s, debug=%s",
        config.stations.origin, config.stations.destination, config.matching.strategy, config.debug,
    )

    try:
        if config.fetch_test:
            logger.info("Running fetch test")
            sys.exit(run_fetch_test(config))
        elif config.search:
            logger.info("Searching for station: %s", config.search)
            run_search(config)
        else:
            logger.info("Starting board")
            run_app(config)
    except KeyboardInterrupt:
        print("\nShutting down.")
        sys.exit(0)
    except Exception as e:
        logger.error("Unexpected error: %s", e, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
