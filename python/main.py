import sys

from fileshover.cli import main

# Same as `python -m fileshover`, e.g. python main.py --root ./site --port 7878
sys.exit(main())
