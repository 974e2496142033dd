import sys

from .acl_remover import main

sys.exit(main())
