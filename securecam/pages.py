INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{{ device_name }} Client</title>
    <style>
      body { font-family: Arial, sans-serif; max-width: 800px; margin: 0 auto; padding: 20px; background: #f5f5f5; }
      .container { background: #fff; padding: 20px; border-radius: 8px; box-shadow: 0 2px 10px rgba(0,0,0,0.1); }
      h1 { color: #333; text-align: center; }
      #preview { width: 100%; max-width: 640px; min-height: 300px; border: 2px solid #ddd; border-radius: 8px; margin: 20px auto; display: block; background: #000; }
      .controls { text-align: center; margin: 20px 0; }
      button { background: #007bff; color: #fff; border: none; padding: 10px 20px; margin: 5px; border-radius: 4px; cursor: pointer; font-size: 16px; }
      button:hover { background: #0056b3; }
      button:disabled { background: #6c757d; cursor: not-allowed; }
      .status { padding: 10px; margin: 10px 0; border-radius: 4px; text-align: center; }
      .status.connecting { background: #fff3cd; color: #856404; }
      .status.connected { background: #d4edda; color: #155724; }
      .status.error { background: #f8d7da; color: #721c24; }
    </style>
  </head>
  <body>
    <div class="container">
      <h1>{{ device_name }}</h1>
      <div class="status" id="status">Ready to connect</div>
      <div class="controls">
        <button id="connectBtn" onclick="connectToCamera()">Connect to Camera</button>
        <button id="startBtn" onclick="startCamera()">Start Camera</button>
        <button id="disconnectBtn" onclick="disconnect()" disabled>Disconnect</button>
      </div>
      <img id="preview" alt="Camera stream">
      <div class="controls">
        <p>Live frames are delivered as MJPEG from <code>/stream</code>.</p>
        <p>Home Assistant setup: <a href="/home-assistant">/home-assistant</a></p>
      </div>
    </div>
    <script>
      let peerConnection = null;
      const preview = document.getElementById("preview");
      const statusDiv = document.getElementById("status");
      const connectBtn = document.getElementById("connectBtn");
      const disconnectBtn = document.getElementById("disconnectBtn");

      function updateStatus(message, type) {
        statusDiv.textContent = message;
        statusDiv.className = "status " + (type || "");
      }

      async function startCamera() {
        try {
          const res = await fetch("/start-camera", { method: "POST" });
          const data = await res.json();
          updateStatus(data.message || "Camera start requested", data.status === "success" ? "connecting" : "error");
        } catch (error) {
          updateStatus("Start failed: " + error.message, "error");
        }
      }

      async function handshake() {
        if (!window.RTCPeerConnection) return;
        peerConnection = new RTCPeerConnection();
        peerConnection.onicecandidate = (event) => {
          if (!event.candidate) return;
          fetch("/ice-candidate", {
            method: "POST",
            headers: { "Content-Type": "application/json" },
            body: JSON.stringify({
              candidate: event.candidate.candidate,
              sdpMLineIndex: event.candidate.sdpMLineIndex,
              sdpMid: event.candidate.sdpMid,
            }),
          }).catch(() => {});
        };
        peerConnection.addTransceiver("video", { direction: "recvonly" });
        const offer = await peerConnection.createOffer();
        await peerConnection.setLocalDescription(offer);
        const res = await fetch("/offer", {
          method: "POST",
          headers: { "Content-Type": "application/json" },
          body: JSON.stringify({ type: "offer", sdp: offer.sdp }),
        });
        const answer = await res.json();
        try {
          await peerConnection.setRemoteDescription(answer);
        } catch (error) {
          console.warn("Answer rejected by browser", error);
        }
      }

      async function connectToCamera() {
        connectBtn.disabled = true;
        updateStatus("Connecting to camera...", "connecting");
        try {
          await handshake();
        } catch (error) {
          console.warn("Signaling handshake failed", error);
        }
        preview.onload = () => updateStatus("Connected to camera!", "connected");
        preview.onerror = () => {
          updateStatus("Stream unavailable, retrying...", "error");
          setTimeout(() => { preview.src = "/stream?ts=" + Date.now(); }, 3000);
        };
        preview.src = "/stream";
        disconnectBtn.disabled = false;
      }

      function disconnect() {
        if (peerConnection) {
          peerConnection.close();
          peerConnection = null;
        }
        preview.onerror = null;
        preview.removeAttribute("src");
        updateStatus("Disconnected");
        connectBtn.disabled = false;
        disconnectBtn.disabled = true;
      }
    </script>
  </body>
</html>
"""

HOME_ASSISTANT_HTML = """<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{{ device_name }} - Home Assistant Integration</title>
    <style>
      body { font-family: Arial, sans-serif; max-width: 1000px; margin: 0 auto; padding: 20px; background: #f5f5f5; }
      .container { background: #fff; padding: 20px; border-radius: 8px; box-shadow: 0 2px 10px rgba(0,0,0,0.1); margin: 20px 0; }
      h1, h2 { color: #333; }
      .config-block { background: #f8f9fa; padding: 15px; border-radius: 5px; margin: 10px 0; border-left: 4px solid #007bff; }
      code { background: #e9ecef; padding: 2px 4px; border-radius: 3px; font-family: monospace; }
      .endpoint { background: #d4edda; padding: 10px; border-radius: 4px; margin: 5px 0; }
      .status { padding: 10px; border-radius: 4px; margin: 10px 0; }
      .status.ready { background: #d4edda; color: #155724; }
      .status.error { background: #f8d7da; color: #721c24; }
      button { background: #007bff; color: #fff; border: none; padding: 10px 20px; margin: 5px; border-radius: 4px; cursor: pointer; font-size: 16px; }
      pre { background: #f8f9fa; padding: 15px; border-radius: 5px; overflow-x: auto; }
    </style>
  </head>
  <body>
    <h1>{{ device_name }} - Home Assistant Integration</h1>
    <div class="container">
      <h2>Camera Status</h2>
      <div id="cameraStatus" class="status">Loading...</div>
      <div class="endpoint"><strong>Snapshot URL:</strong> <code>{{ snapshot_url }}</code></div>
      <div class="endpoint"><strong>Stream URL:</strong> <code>{{ stream_url }}</code></div>
    </div>
    <div class="container">
      <h2>Home Assistant Configuration</h2>
      <div class="config-block">
        <h3>Add to configuration.yaml:</h3>
        <pre><code>camera:
  - platform: generic
    name: {{ device_name }}
    still_image_url: {{ snapshot_url }}
    stream_source: {{ stream_url }}
    verify_ssl: false
    frame_interval: 0.1</code></pre>
      </div>
      <div class="config-block">
        <h3>Or use the Generic Camera integration in the UI:</h3>
        <ol>
          <li>Go to <strong>Settings &rarr; Devices &amp; Services</strong></li>
          <li>Click <strong>Add Integration</strong></li>
          <li>Search for <strong>Generic Camera</strong></li>
          <li>Enter the following details:
            <ul>
              <li><strong>Name:</strong> {{ device_name }}</li>
              <li><strong>Still Image URL:</strong> <code>{{ snapshot_url }}</code></li>
              <li><strong>Stream Source:</strong> <code>{{ stream_url }}</code></li>
            </ul>
          </li>
        </ol>
      </div>
    </div>
    <div class="container">
      <h2>Test Endpoints</h2>
      <button onclick="probe('/snapshot')">Test Snapshot</button>
      <button onclick="probe('/camera-info', true)">Get Camera Info</button>
      <div id="testResults"></div>
    </div>
    <script>
      async function updateCameraStatus() {
        const statusDiv = document.getElementById("cameraStatus");
        try {
          const res = await fetch("/status");
          const data = await res.json();
          const ready = data.camera_ready && data.video_ready;
          statusDiv.textContent = ready ? "Camera is ready and streaming" : "Camera not ready";
          statusDiv.className = "status " + (ready ? "ready" : "error");
        } catch (error) {
          statusDiv.textContent = "Error checking status";
          statusDiv.className = "status error";
        }
      }

      async function probe(path, showJson) {
        const results = document.getElementById("testResults");
        results.textContent = "Testing " + path + "...";
        try {
          const res = await fetch(path);
          if (showJson) {
            results.textContent = JSON.stringify(await res.json(), null, 2);
          } else {
            results.textContent = res.ok ? path + " OK" : path + " failed: " + res.status;
          }
        } catch (error) {
          results.textContent = path + " error: " + error.message;
        }
      }

      updateCameraStatus();
      setInterval(updateCameraStatus, 5000);
    </script>
  </body>
</html>
"""
