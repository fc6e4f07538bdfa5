"""Console view of the risk and alert topics."""
from voiceshield.core.message_bus import ALERT_PORT, RISK_PORT, MessageBus

bus = MessageBus()
sub = bus.create_subscriber([RISK_PORT, ALERT_PORT])

print('=== Voice Scam Shield Monitor ===')
print(f'Listening on ports {RISK_PORT} (risk), {ALERT_PORT} (alert)')
print('Ctrl+C to exit\n')

last_label = None
while True:
    result = bus.receive(sub, timeout_ms=100)
    if not result:
        continue
    topic, envelope = result
    data = envelope.get('data', {})
    if topic == 'risk':
        state = data.get('state', {})
        features = data.get('features', {})
        line = (
            f"[RISK] {state.get('score', 0):3d} {state.get('label', '?'):<10} "
            f"spoof={features.get('spoof_score', 0.0):.2f} "
            f"vol={features.get('volume', 0.0):.2f} {state.get('rationale', '')}"
        )
        if state.get('label') != last_label:
            print(line)
            last_label = state.get('label')
        else:
            print(line, end='\r')
    else:
        print(f'\n[ALERT] {data}')
