import sys

from discord_runner.main import main

sys.exit(main())
