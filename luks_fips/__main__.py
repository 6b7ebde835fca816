import sys

from luks_fips.main import main

sys.exit(main())
