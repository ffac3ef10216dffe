from sitebuilder.cli import main

raise SystemExit(main())
