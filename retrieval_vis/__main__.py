import logging
from .run import main

# Configure process-wide logging once at entrypoint
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logging.getLogger("retrieval_vis").setLevel(logging.INFO)

if __name__ == "__main__":
    main()
