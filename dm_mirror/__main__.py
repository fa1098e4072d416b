from dm_mirror.cli import main

raise SystemExit(main())
