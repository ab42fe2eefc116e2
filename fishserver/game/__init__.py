"""Real-time game side: WebSocket clients, hub, room loops and message handling."""