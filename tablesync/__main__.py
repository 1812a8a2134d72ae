from tablesync.cli import main

raise SystemExit(main())
