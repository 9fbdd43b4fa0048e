import sys

from profile_tiles.main import main

sys.exit(main())
