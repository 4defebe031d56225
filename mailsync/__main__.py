from mailsync.cli import main

raise SystemExit(main())
