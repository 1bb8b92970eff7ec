import sys
from relax.driver import main

sys.exit(main())
