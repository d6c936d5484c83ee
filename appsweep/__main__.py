from appsweep.cli import main

raise SystemExit(main())
