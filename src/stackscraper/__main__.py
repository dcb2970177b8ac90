from stackscraper.cli import main

raise SystemExit(main())
