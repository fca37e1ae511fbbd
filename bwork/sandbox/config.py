"""
Sandbox Configuration - static per-driver settings and the project template.

Runtime knobs (API keys, retries, health-check tuning) live in
bwork.core.config.settings. This module holds values that describe the
sandbox image itself and do not change between deployments.
"""

import json
from dataclasses import dataclass
from typing import Dict

APP_ENTRY_FILE = "src/App.jsx"
SMOKE_TEST_FILE = "src/__tests__/App.test.jsx"
DEV_SERVER_LOG = "/tmp/vite.log"


@dataclass(frozen=True)
class ProviderConfig:
    """Static description of a sandbox driver's environment."""

    work_dir: str
    """Absolute project directory inside the sandbox."""

    port: int
    """Port the Vite dev server listens on."""

    startup_delay_s: float
    """Time to wait after launching the dev server."""

    restart_delay_s: float
    """Time to wait after relaunching the dev server."""

    lifetime_s: int
    """Provider-native lifetime of the environment."""


E2B_CONFIG = ProviderConfig(
    work_dir="/home/user/app",
    port=5173,
    startup_delay_s=10.0,
    restart_delay_s=2.0,
    lifetime_s=60 * 60,
)

DOCKER_CONFIG = ProviderConfig(
    work_dir="/app",
    port=5173,
    startup_delay_s=8.0,
    restart_delay_s=2.0,
    lifetime_s=30 * 60,
)


# ---------------------------------------------------------------------------
# VITE + REACT + TAILWIND TEMPLATE
# ---------------------------------------------------------------------------
# Packages listed here are preinstalled by `npm install` during setup and are
# never re-installed by the package detector.

TEMPLATE_PACKAGE_JSON = {
    "name": "sandbox-app",
    "version": "1.0.0",
    "type": "module",
    "scripts": {
        "dev": "vite --host",
        "build": "vite build",
        "preview": "vite preview",
        "test": "vitest run",
    },
    "dependencies": {
        "react": "^18.2.0",
        "react-dom": "^18.2.0",
    },
    "devDependencies": {
        "@vitejs/plugin-react": "^4.0.0",
        "vite": "^4.3.9",
        "tailwindcss": "^3.3.0",
        "postcss": "^8.4.31",
        "autoprefixer": "^10.4.16",
        "tailwindcss-animate": "^1.0.7",
        "vitest": "^1.0.0",
        "@testing-library/react": "^14.0.0",
        "jsdom": "^23.0.0",
    },
}

VITE_CONFIG_JS = """import { defineConfig } from 'vite'
import react from '@vitejs/plugin-react'

export default defineConfig({
  plugins: [react()],
  server: {
    host: '0.0.0.0',
    port: 5173,
    strictPort: true,
    hmr: false,
    allowedHosts: ['.e2b.app', '.e2b.dev', 'localhost', '127.0.0.1']
  },
  test: {
    environment: 'jsdom',
    globals: true,
  }
})
"""

TAILWIND_CONFIG_JS = """/** @type {import('tailwindcss').Config} */
export default {
  darkMode: ["class"],
  content: [
    "./index.html",
    "./src/**/*.{js,ts,jsx,tsx}",
  ],
  theme: {
    extend: {
      colors: {
        border: "hsl(var(--border))",
        background: "hsl(var(--background))",
        foreground: "hsl(var(--foreground))",
        primary: {
          DEFAULT: "hsl(var(--primary))",
          foreground: "hsl(var(--primary-foreground))"
        },
        muted: {
          DEFAULT: "hsl(var(--muted))",
          foreground: "hsl(var(--muted-foreground))"
        },
      },
      borderRadius: {
        lg: "var(--radius)",
        md: "calc(var(--radius) - 2px)",
        sm: "calc(var(--radius) - 4px)",
      },
    },
  },
  plugins: [require("tailwindcss-animate")],
}
"""

POSTCSS_CONFIG_JS = """export default {
  plugins: {
    tailwindcss: {},
    autoprefixer: {},
  },
}
"""

INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>Sandbox App</title>
  </head>
  <body>
    <div id="root"></div>
    <script type="module" src="/src/main.jsx"></script>
  </body>
</html>
"""

MAIN_JSX = """import React from 'react'
import ReactDOM from 'react-dom/client'
import App from './App.jsx'
import './index.css'

ReactDOM.createRoot(document.getElementById('root')).render(
  <React.StrictMode>
    <App />
  </React.StrictMode>,
)
"""

PLACEHOLDER_APP_JSX = """function App() {
  return (
    <div className="min-h-screen bg-gray-900 text-white flex items-center justify-center p-4">
      <p className="text-lg text-gray-400">Sandbox ready</p>
    </div>
  )
}

export default App
"""

INDEX_CSS = """@tailwind base;
@tailwind components;
@tailwind utilities;

@layer base {
  :root {
    --background: 0 0% 100%;
    --foreground: 222.2 84% 4.9%;
    --primary: 222.2 47.4% 11.2%;
    --primary-foreground: 210 40% 98%;
    --muted: 210 40% 96.1%;
    --muted-foreground: 215.4 16.3% 46.9%;
    --border: 214.3 31.8% 91.4%;
    --radius: 0.75rem;
  }

  body {
    @apply bg-background text-foreground;
  }
}
"""

VITE_TEMPLATE: Dict[str, str] = {
    "package.json": json.dumps(TEMPLATE_PACKAGE_JSON, indent=2),
    "vite.config.js": VITE_CONFIG_JS,
    "tailwind.config.js": TAILWIND_CONFIG_JS,
    "postcss.config.js": POSTCSS_CONFIG_JS,
    "index.html": INDEX_HTML,
    "src/main.jsx": MAIN_JSX,
    APP_ENTRY_FILE: PLACEHOLDER_APP_JSX,
    "src/index.css": INDEX_CSS,
}
